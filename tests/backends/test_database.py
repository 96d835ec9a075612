"""Tests for the SQL database cache backend."""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import event, inspect, text

from resultcache.backends.connection import ConnectionScope
from resultcache.backends.database import (
    CacheStore,
    DatabaseCacheBackend,
    build_fetch_statement,
    clear_compiled_cache,
    compiled_cache_for,
)
from resultcache.base import CacheConfigError, CacheReadError
from resultcache.config import CacheConfig, EncryptionSettings, PoolingConfig
from resultcache.encryption.base import DecryptionError
from resultcache.encryption.streaming import MAGIC
from resultcache.strategies import StrategyDescriptor

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def read_or_none(stream):
    return stream.read() if stream is not None else None


def fresh_for(seconds: float) -> StrategyDescriptor:
    return StrategyDescriptor.ttl(multiplier=1, avg_execution_ms=seconds * 1000)


class TestSchema:
    """Tests for table creation."""

    def test_creates_table_and_index(self, backend):
        inspector = inspect(backend.engine)
        assert "query_cache" in inspector.get_table_names()
        columns = {c["name"] for c in inspector.get_columns("query_cache")}
        assert columns == {"query_hash", "updated_at", "results"}
        indexes = inspector.get_indexes("query_cache")
        assert any(
            ix["column_names"] == ["query_hash", "updated_at"] for ix in indexes
        )

    def test_custom_table_name(self, db_url, clock):
        backend = DatabaseCacheBackend(
            connection_url=db_url, table_name="my_cache", clock=clock
        )
        try:
            assert "my_cache" in inspect(backend.engine).get_table_names()
        finally:
            backend.close()

    def test_invalid_table_name_rejected(self, db_url):
        with pytest.raises(CacheConfigError):
            DatabaseCacheBackend(connection_url=db_url, table_name="drop table")

    def test_in_memory_sqlite(self, clock, query_hash):
        backend = DatabaseCacheBackend(connection_url="sqlite://", clock=clock)
        try:
            backend.save_results(query_hash, b"payload")
            assert backend.cached_results(query_hash, fresh_for(60), read_or_none) == b"payload"
        finally:
            backend.close()


class TestFreshness:
    """Visibility of entries depending on strategy and clock."""

    def test_ttl_window_boundary(self, backend, clock, query_hash):
        """An entry is visible for exactly multiplier * avg_execution_ms."""
        strategy = StrategyDescriptor.ttl(
            multiplier=2, avg_execution_ms=1000, invalidated_at=EPOCH
        )
        backend.save_results(query_hash, b"result")
        written_at = clock()

        clock.current = written_at + timedelta(milliseconds=1999)
        assert backend.cached_results(query_hash, strategy, read_or_none) == b"result"

        clock.current = written_at + timedelta(milliseconds=2001)
        assert backend.cached_results(query_hash, strategy, read_or_none) is None

    def test_invalidation_overrides_ttl(self, backend, clock, query_hash):
        backend.save_results(query_hash, b"result")
        written_at = clock()
        strategy = StrategyDescriptor.ttl(
            multiplier=1000,
            avg_execution_ms=60_000,
            invalidated_at=written_at + timedelta(milliseconds=5000),
        )

        clock.current = written_at + timedelta(milliseconds=10)
        assert backend.cached_results(query_hash, strategy, read_or_none) is None

    def test_missing_average_is_a_miss(self, backend, clock, query_hash):
        backend.save_results(query_hash, b"result")
        strategy = StrategyDescriptor.ttl(multiplier=1000, avg_execution_ms=None)

        assert backend.cached_results(query_hash, strategy, read_or_none) is None
        clock.advance(milliseconds=1)
        assert backend.cached_results(query_hash, strategy, read_or_none) is None

    def test_window_past_representable_range(self, backend, clock, query_hash):
        """An enormous window serves the entry instead of failing."""
        backend.save_results(query_hash, b"result")
        clock.advance(days=365)
        strategy = StrategyDescriptor.ttl(multiplier=1000, avg_execution_ms=1e11)
        assert backend.cached_results(query_hash, strategy, read_or_none) == b"result"

    def test_none_strategy_is_a_miss(self, backend, query_hash):
        backend.save_results(query_hash, b"result")
        strategy = StrategyDescriptor(type="none", avg_execution_ms=1000)
        assert backend.cached_results(query_hash, strategy, read_or_none) is None

    def test_unknown_hash_is_a_miss(self, backend):
        other = hashlib.sha256(b"never cached").digest()
        assert backend.cached_results(other, fresh_for(60), read_or_none) is None

    def test_responder_called_once_with_none_on_miss(self, backend, query_hash):
        calls = []

        def respond(stream):
            calls.append(stream)
            return "computed"

        assert backend.cached_results(query_hash, fresh_for(60), respond) == "computed"
        assert calls == [None]


class TestSaveResults:
    """Tests for the update-then-insert write path."""

    def test_second_write_replaces_first(self, backend, clock, query_hash):
        backend.save_results(query_hash, b"first")
        clock.advance(seconds=5)
        backend.save_results(query_hash, b"second")

        entries = backend.store.entries(query_hash)
        assert len(entries) == 1
        assert entries[0].updated_at == clock()
        assert backend.codec.decrypt(entries[0].results) == b"second"

    def test_payload_is_encrypted_at_rest(self, backend, query_hash):
        backend.save_results(query_hash, b"sensitive rows")

        stored = backend.store.entries(query_hash)[0].results
        assert stored.startswith(MAGIC)
        assert b"sensitive rows" not in stored

    def test_empty_payload(self, backend, query_hash):
        backend.save_results(query_hash, b"")
        assert backend.cached_results(query_hash, fresh_for(60), read_or_none) == b""

    def test_large_payload_spans_chunks(self, db_url, clock, query_hash):
        config = CacheConfig(
            connection_url=db_url,
            encryption=EncryptionSettings(
                secret_key="correct-horse-battery-staple", chunk_size=1024
            ),
        )
        payload = bytes(range(256)) * 40
        backend = DatabaseCacheBackend(config, clock=clock)
        try:
            backend.save_results(query_hash, payload)
            assert backend.cached_results(query_hash, fresh_for(60), read_or_none) == payload
        finally:
            backend.close()

    def test_write_failure_is_swallowed(self, db_url, query_hash, caplog):
        backend = DatabaseCacheBackend(connection_url=db_url, create_tables=False)
        try:
            backend.save_results(query_hash, b"payload")
        finally:
            backend.close()
        assert "Error saving query results to cache." in caplog.text


class TestCachedResults:
    """Tests for the read path."""

    def test_end_to_end(self, backend, clock, query_hash):
        backend.save_results(query_hash, bytes([0x01, 0x02, 0x03]))
        written_at = clock()
        clock.advance(seconds=1)

        older = StrategyDescriptor.ttl(multiplier=1, avg_execution_ms=60_000)
        assert backend.cached_results(query_hash, older, read_or_none) == b"\x01\x02\x03"

        newer = StrategyDescriptor.ttl(
            multiplier=1,
            avg_execution_ms=60_000,
            invalidated_at=written_at + timedelta(milliseconds=500),
        )
        assert backend.cached_results(query_hash, newer, read_or_none) is None

    def test_stream_closed_after_responder(self, backend, query_hash):
        backend.save_results(query_hash, b"payload")
        seen = []

        backend.cached_results(query_hash, fresh_for(60), seen.append)
        assert len(seen) == 1
        assert seen[0].closed

    def test_missing_table_raises_read_error(self, db_url, query_hash, caplog):
        backend = DatabaseCacheBackend(connection_url=db_url, create_tables=False)
        try:
            with pytest.raises(CacheReadError) as exc_info:
                backend.cached_results(query_hash, fresh_for(60), read_or_none)
        finally:
            backend.close()
        assert exc_info.value.__cause__ is not None
        assert "Error preparing statement to fetch cached query results" in caplog.text

    def test_unencrypted_payloads_stay_readable(self, db_url, clock, query_hash):
        plain = DatabaseCacheBackend(connection_url=db_url, clock=clock)
        plain.save_results(query_hash, b"written before encryption")
        plain.close()

        encrypted = DatabaseCacheBackend(
            CacheConfig(
                connection_url=db_url,
                encryption=EncryptionSettings(secret_key="correct-horse-battery-staple"),
            ),
            clock=clock,
        )
        try:
            result = encrypted.cached_results(query_hash, fresh_for(60), read_or_none)
        finally:
            encrypted.close()
        assert result == b"written before encryption"

    def test_plaintext_starting_with_magic(self, db_url, clock, query_hash):
        """Plaintext that happens to begin with the stream magic is served as is."""
        payload = MAGIC + b"\x01\x02plain user bytes"
        keyless = DatabaseCacheBackend(connection_url=db_url, clock=clock)
        try:
            keyless.save_results(query_hash, payload)
            assert keyless.cached_results(query_hash, fresh_for(60), read_or_none) == payload
        finally:
            keyless.close()

    def test_responder_failure_releases_resources(self, db_url, clock, query_hash):
        config = CacheConfig(
            connection_url=db_url,
            encryption=EncryptionSettings(secret_key="correct-horse-battery-staple"),
            pooling=PoolingConfig(pool_size=1, max_overflow=0, pool_timeout=1),
        )
        backend = DatabaseCacheBackend(config, clock=clock)
        seen = []

        def respond(stream):
            seen.append(stream)
            raise ValueError("responder failed")

        try:
            backend.save_results(query_hash, b"payload")
            with pytest.raises(ValueError, match="responder failed"):
                backend.cached_results(query_hash, fresh_for(60), respond)

            assert seen[0].closed
            assert backend.engine.pool.checkedout() == 0
            assert backend.cached_results(query_hash, fresh_for(60), read_or_none) == b"payload"
        finally:
            backend.close()

    def test_encrypted_payload_without_key(self, backend, db_url, clock, query_hash):
        backend.save_results(query_hash, b"secret")

        keyless = DatabaseCacheBackend(connection_url=db_url, clock=clock)
        try:
            with pytest.raises(DecryptionError):
                keyless.cached_results(query_hash, fresh_for(60), read_or_none)
        finally:
            keyless.close()


class TestConnectionScope:
    """Nested storage access from inside a responder."""

    def test_nested_save_reuses_connection(self, db_url, clock, query_hash):
        """A single-connection pool does not deadlock when the scope is shared."""
        config = CacheConfig(
            connection_url=db_url,
            pooling=PoolingConfig(pool_size=1, max_overflow=0, pool_timeout=1),
        )
        backend = DatabaseCacheBackend(config, clock=clock)
        other_hash = hashlib.sha256(b"SELECT 2").digest()
        try:
            backend.save_results(query_hash, b"outer")
            scope = backend.connection_scope()

            def respond(stream):
                backend.save_results(other_hash, b"inner", scope=scope)
                assert scope.depth == 1
                return stream.read()

            assert backend.cached_results(query_hash, fresh_for(60), respond, scope=scope) == b"outer"
            assert not scope.is_open
            assert backend.cached_results(other_hash, fresh_for(60), read_or_none) == b"inner"
        finally:
            backend.close()

    def test_uncommitted_write_visible_in_same_scope(self, backend, query_hash):
        scope = backend.connection_scope()
        with scope.connect():
            backend.save_results(query_hash, b"pending", scope=scope)
            assert (
                backend.cached_results(query_hash, fresh_for(60), read_or_none, scope=scope)
                == b"pending"
            )
        assert backend.cached_results(query_hash, fresh_for(60), read_or_none) == b"pending"

    def test_failed_nested_write_keeps_caller_transaction(self, backend, query_hash):
        """A failing cache write rolls back to its savepoint only."""
        with backend.engine.begin() as conn:
            conn.execute(text("CREATE TABLE bookkeeping (note TEXT)"))
        broken = DatabaseCacheBackend(
            engine=backend.engine, table_name="missing_cache", create_tables=False
        )
        statements = []

        def record(conn, cursor, statement, parameters, context, executemany):
            statements.append(statement)

        event.listen(backend.engine, "before_cursor_execute", record)
        scope = backend.connection_scope()
        try:
            with scope.connect() as conn:
                conn.execute(text("INSERT INTO bookkeeping VALUES ('before')"))
                broken.save_results(query_hash, b"payload", scope=scope)
                conn.execute(text("INSERT INTO bookkeeping VALUES ('after')"))
        finally:
            event.remove(backend.engine, "before_cursor_execute", record)
            broken.close()

        with backend.engine.connect() as conn:
            notes = conn.execute(text("SELECT note FROM bookkeeping ORDER BY note")).scalars().all()
        assert notes == ["after", "before"]
        assert any(s.startswith("SAVEPOINT") for s in statements)
        assert any(s.startswith("ROLLBACK TO SAVEPOINT") for s in statements)

    def test_unshared_write_uses_no_savepoint(self, backend, query_hash):
        statements = []

        def record(conn, cursor, statement, parameters, context, executemany):
            statements.append(statement)

        event.listen(backend.engine, "before_cursor_execute", record)
        try:
            backend.save_results(query_hash, b"payload")
        finally:
            event.remove(backend.engine, "before_cursor_execute", record)
        assert not any("SAVEPOINT" in s for s in statements)

    def test_scope_is_bound_to_engine(self, backend):
        scope = backend.connection_scope()
        assert isinstance(scope, ConnectionScope)
        assert scope.engine is backend.engine


class TestPurge:
    """Tests for purging old entries."""

    def test_purge_horizon(self, backend, clock):
        start = clock()
        ages = {b"old": 120, b"edge": 60, b"recent": 59, b"new": 0}
        for name, age in ages.items():
            clock.current = start - timedelta(seconds=age)
            backend.save_results(hashlib.sha256(name).digest(), name)
        clock.current = start

        assert backend.purge(60) == 2

        remaining = backend.store.entries()
        assert {backend.codec.decrypt(e.results) for e in remaining} == {b"recent", b"new"}
        assert all(clock() - e.updated_at < timedelta(seconds=60) for e in remaining)

    def test_purge_old_entries_returns_none(self, backend, clock, query_hash):
        backend.save_results(query_hash, b"payload")
        clock.advance(days=1)
        assert backend.purge_old_entries(3600) is None
        assert backend.store.entries() == []

    def test_default_horizon(self, backend, clock, query_hash):
        backend.save_results(query_hash, b"payload")
        clock.advance(days=89)
        assert backend.purge() == 0
        clock.advance(days=1)
        assert backend.purge() == 1

    @pytest.mark.parametrize("bad", ["60", None, True, [60]])
    def test_non_numeric_age_rejected(self, backend, bad):
        with pytest.raises(TypeError):
            backend.purge_old_entries(bad)

    def test_age_past_representable_range(self, backend, clock, query_hash):
        backend.save_results(query_hash, b"payload")
        assert backend.purge(1e12) == 0
        assert len(backend.store.entries()) == 1

    def test_purge_failure_is_swallowed(self, db_url, caplog):
        backend = DatabaseCacheBackend(connection_url=db_url, create_tables=False)
        try:
            assert backend.purge(60) == 0
        finally:
            backend.close()
        assert "Error purging old cache entries" in caplog.text


class TestCompiledCache:
    """Tests for the per-dialect compiled statement cache."""

    def test_cache_per_dialect(self, backend):
        dialect = backend.engine.dialect
        assert compiled_cache_for(dialect) is compiled_cache_for(dialect)

    def test_clear_drops_compiled_statements(self, backend):
        dialect = backend.engine.dialect
        cache = compiled_cache_for(dialect)
        clear_compiled_cache()
        assert compiled_cache_for(dialect) is not cache

    def test_statement_owned_by_store(self, backend):
        """Each store keeps its own statement; no module-level cache holds tables."""
        statement = backend.store.fetch_statement
        assert backend.store.fetch_statement is statement

        other = CacheStore(backend.engine, "query_cache")
        assert other.fetch_statement is not statement
        assert not hasattr(build_fetch_statement, "cache_info")

class TestStats:
    def test_stats(self, backend, query_hash):
        assert backend.store.stats() == {"count": 0, "total_bytes": 0}
        backend.save_results(query_hash, b"payload")
        stats = backend.store.stats()
        assert stats["count"] == 1
        assert stats["total_bytes"] == len(backend.store.entries()[0].results)
