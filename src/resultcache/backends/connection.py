"""Connection scopes.

A ``ConnectionScope`` pins one pooled connection for a unit of work. Cache
lookups hold their connection while the responder runs; if the responder
needed a second connection from a small pool it could wait forever on the
one the lookup is holding. Code running inside a lookup therefore reuses
the lookup's scope instead of checking out a new connection.

Example:
    >>> scope = ConnectionScope(engine)
    >>> def respond(stream):
    ...     # nested work on the same connection
    ...     backend.save_results(other_hash, payload, scope=scope)
    >>> backend.cached_results(query_hash, strategy, respond, scope=scope)
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.engine import Connection, Engine


class ConnectionScope:
    """Re-entrant holder of the current connection for a unit of work.

    The first ``connect()`` checks a connection out of the engine's pool.
    Nested ``connect()`` calls yield that same connection. When the
    outermost block exits, the transaction is committed (rolled back on
    error) and the connection is returned to the pool.

    A scope belongs to one thread of work and is not shared between threads.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._connection: Connection | None = None
        self._depth = 0

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def is_open(self) -> bool:
        """Whether a connection is currently checked out."""
        return self._connection is not None

    @property
    def connection(self) -> Connection:
        """The current connection.

        Raises:
            RuntimeError: If no ``connect()`` block is active.
        """
        if self._connection is None:
            raise RuntimeError("No connection is open in this scope")
        return self._connection

    @property
    def depth(self) -> int:
        """Number of active nested ``connect()`` blocks."""
        return self._depth

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        """Use the current connection, opening one if none is active."""
        if self._connection is not None:
            self._depth += 1
            try:
                yield self._connection
            finally:
                self._depth -= 1
            return

        conn = self._engine.connect()
        self._connection = conn
        self._depth = 1
        try:
            yield conn
            if conn.in_transaction():
                conn.commit()
        except BaseException:
            if conn.in_transaction():
                conn.rollback()
            raise
        finally:
            self._connection = None
            self._depth = 0
            conn.close()
