"""Base classes and interfaces for cache backends.

This module defines the exception hierarchy and the abstract facade that
every cache backend implements. Surrounding code depends only on
``CacheBackend``; storage and encryption collaborators stay hidden behind it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, BinaryIO, Callable, TypeVar

if TYPE_CHECKING:
    from resultcache.backends.connection import ConnectionScope
    from resultcache.strategies import StrategyDescriptor


# =============================================================================
# Exceptions
# =============================================================================


class CacheError(Exception):
    """Base exception for all cache-related errors."""

    pass


class CacheConnectionError(CacheError):
    """Raised when connection to the cache storage fails."""

    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        super().__init__(f"Failed to connect to {backend}: {message}")


class CacheReadError(CacheError):
    """Raised when the cached-results query cannot be executed."""

    pass


class CacheConfigError(CacheError):
    """Invalid cache configuration."""

    pass


class CacheBackendError(CacheError):
    """Requested cache backend is unknown or unavailable."""

    def __init__(self, backend: str, available: list[str] | None = None) -> None:
        self.available = available or []
        msg = f"Unknown cache backend: {backend}"
        if self.available:
            msg += f". Available: {', '.join(self.available)}"
        super().__init__(msg)


# =============================================================================
# Types
# =============================================================================

R = TypeVar("R")

# Called with a decrypted result stream, or None on a cache miss.
Responder = Callable[[BinaryIO | None], R]


def short_hex_hash(query_hash: bytes) -> str:
    """Return a short hex prefix of a query hash, suitable for log messages."""
    return query_hash.hex()[:8]


@dataclass
class CacheEntry:
    """A persisted cache entry.

    Attributes:
        query_hash: Content hash of the query, the logical key.
        updated_at: Time of the last write (aware UTC).
        results: Stored payload, encrypted when encryption is enabled.
    """

    query_hash: bytes
    updated_at: datetime
    results: bytes

    @property
    def size(self) -> int:
        """Stored payload size in bytes."""
        return len(self.results)


# =============================================================================
# Abstract Backend
# =============================================================================


class CacheBackend(ABC):
    """Abstract facade for query result caches.

    Exposes the three operations the rest of the system uses: reading a
    fresh cached result, saving a result, and purging old entries.
    Alternative storage (in-memory, object stores) plugs in by subclassing.
    """

    @abstractmethod
    def cached_results(
        self,
        query_hash: bytes,
        strategy: StrategyDescriptor,
        respond: Responder[R],
        scope: ConnectionScope | None = None,
    ) -> R:
        """Look up a cached result and hand it to ``respond``.

        ``respond`` is called exactly once, with a readable binary stream of
        the decrypted payload on a hit or ``None`` on a miss. The stream is
        only valid for the duration of the call. The value returned by
        ``respond`` is returned.

        Args:
            query_hash: Content hash identifying the query.
            strategy: Freshness policy for this lookup.
            respond: Responder callback.
            scope: Connection scope to run in. Code that needs storage from
                inside ``respond`` must reuse this same scope.

        Raises:
            CacheReadError: If the lookup query cannot be executed.
        """
        ...

    @abstractmethod
    def save_results(
        self,
        query_hash: bytes,
        results: bytes,
        scope: ConnectionScope | None = None,
    ) -> None:
        """Store ``results`` for ``query_hash``, replacing any existing entry.

        Best-effort: failures are logged and never raised.
        """
        ...

    @abstractmethod
    def purge_old_entries(self, max_age_seconds: float) -> None:
        """Delete entries last written ``max_age_seconds`` or more ago.

        Best-effort: storage failures are logged and never raised.

        Raises:
            TypeError: If ``max_age_seconds`` is not a number.
        """
        ...

    def close(self) -> None:
        """Release any resources held by the backend."""
        pass

    def __enter__(self) -> "CacheBackend":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def check_max_age(max_age_seconds: object) -> float:
    """Validate a purge horizon, returning it as a float."""
    if isinstance(max_age_seconds, bool) or not isinstance(
        max_age_seconds, (int, float)
    ):
        raise TypeError(
            f"max_age_seconds must be a number, got {type(max_age_seconds).__name__}"
        )
    return float(max_age_seconds)
