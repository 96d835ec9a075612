"""In-memory cache backend.

Keeps entries in a process-local dict. Useful for testing and for
single-process deployments that do not need the cache to survive a restart.
Freshness, encryption and purge behave exactly as in the database backend.
"""

from __future__ import annotations

import io
import logging
import threading
from datetime import datetime
from typing import Any, Callable

from resultcache.backends.connection import ConnectionScope
from resultcache.base import (
    CacheBackend,
    CacheEntry,
    R,
    Responder,
    check_max_age,
    short_hex_hash,
)
from resultcache.config import EncryptionSettings
from resultcache.encryption.codec import EncryptionCodec
from resultcache.strategies import (
    StrategyDescriptor,
    StrategyEvaluator,
    as_utc,
    ms_before,
    utc_now,
)

logger = logging.getLogger(__name__)


class MemoryCacheBackend(CacheBackend):
    """In-memory result cache.

    Connection scopes are accepted for interface compatibility and ignored.

    Example:
        >>> backend = MemoryCacheBackend()
        >>> backend.save_results(query_hash, b"payload")
        >>> backend.cached_results(
        ...     query_hash, StrategyDescriptor(type="ttl", avg_execution_ms=100),
        ...     lambda s: s.read() if s else None,
        ... )
        b'payload'
    """

    def __init__(
        self,
        encryption: EncryptionSettings | None = None,
        *,
        codec: EncryptionCodec | None = None,
        clock: Callable[[], datetime] | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the memory backend.

        Args:
            encryption: Payload encryption settings.
            codec: Encryption codec. Built from ``encryption`` if omitted.
            clock: Returns the current time. Defaults to aware UTC now.
            **kwargs: Ignored; allows construction from a shared config.
        """
        settings = encryption or EncryptionSettings()
        self._codec = codec or EncryptionCodec(
            secret_key=settings.secret_key,
            algorithm=settings.algorithm,
            chunk_size=settings.chunk_size,
        )
        self._clock = clock or utc_now
        self._evaluator = StrategyEvaluator(clock=self._clock)
        self._entries: dict[bytes, CacheEntry] = {}
        self._lock = threading.RLock()

    @property
    def codec(self) -> EncryptionCodec:
        return self._codec

    def entries(self) -> list[CacheEntry]:
        """Snapshot of stored entries, newest first."""
        with self._lock:
            entries = list(self._entries.values())
        return sorted(entries, key=lambda e: e.updated_at, reverse=True)

    def cached_results(
        self,
        query_hash: bytes,
        strategy: StrategyDescriptor,
        respond: Responder[R],
        scope: ConnectionScope | None = None,
    ) -> R:
        cutoff = self._evaluator.evaluate(strategy, query_hash)
        if cutoff is None:
            return respond(None)

        with self._lock:
            entry = self._entries.get(query_hash)
        if entry is None or entry.updated_at < cutoff:
            logger.debug(f"No fresh cached results for query {short_hex_hash(query_hash)}")
            return respond(None)

        with self._codec.maybe_decrypt_stream(io.BytesIO(entry.results)) as stream:
            return respond(stream)

    def save_results(
        self,
        query_hash: bytes,
        results: bytes,
        scope: ConnectionScope | None = None,
    ) -> None:
        logger.debug(f"Caching results for query with hash {short_hex_hash(query_hash)}.")
        try:
            entry = CacheEntry(
                query_hash=query_hash,
                updated_at=as_utc(self._clock()),
                results=self._codec.maybe_encrypt_for_stream(results),
            )
        except Exception:
            logger.error("Error saving query results to cache.", exc_info=True)
            return
        with self._lock:
            self._entries[query_hash] = entry

    def purge_old_entries(self, max_age_seconds: float) -> None:
        self.purge(max_age_seconds)

    def purge(self, max_age_seconds: float) -> int:
        """Delete old entries, returning how many were removed."""
        max_age = check_max_age(max_age_seconds)
        horizon = ms_before(as_utc(self._clock()), max_age * 1000)
        with self._lock:
            stale = [h for h, e in self._entries.items() if e.updated_at <= horizon]
            for query_hash in stale:
                del self._entries[query_hash]
        logger.debug(f"Purged {len(stale)} old cache entries")
        return len(stale)

    def clear(self) -> None:
        """Remove all entries."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
