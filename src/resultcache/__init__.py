"""Persistent, encrypted cache for query results.

Results are keyed by a content hash of the query and served while fresh
according to a caller-supplied strategy.

Example:
    >>> from resultcache import StrategyDescriptor, get_cache_backend
    >>>
    >>> backend = get_cache_backend("database", connection_url="sqlite:///cache.db")
    >>> backend.save_results(query_hash, payload)
    >>> backend.cached_results(
    ...     query_hash,
    ...     StrategyDescriptor.ttl(multiplier=10, avg_execution_ms=2000),
    ...     lambda stream: stream.read() if stream is not None else None,
    ... )
"""

from resultcache.backends.connection import ConnectionScope
from resultcache.backends.database import DatabaseCacheBackend
from resultcache.backends.memory import MemoryCacheBackend
from resultcache.base import (
    CacheBackend,
    CacheBackendError,
    CacheConfigError,
    CacheConnectionError,
    CacheEntry,
    CacheError,
    CacheReadError,
    short_hex_hash,
)
from resultcache.config import CacheConfig, EncryptionSettings, PoolingConfig
from resultcache.factory import (
    backend_from_config,
    get_cache_backend,
    list_available_backends,
    register_cache_backend,
)
from resultcache.strategies import (
    StrategyDescriptor,
    StrategyEvaluator,
    StrategyType,
    register_strategy,
)

__version__ = "0.1.0"

__all__ = [
    # Backends
    "CacheBackend",
    "ConnectionScope",
    "DatabaseCacheBackend",
    "MemoryCacheBackend",
    "CacheEntry",
    # Factory
    "backend_from_config",
    "get_cache_backend",
    "list_available_backends",
    "register_cache_backend",
    # Configuration
    "CacheConfig",
    "EncryptionSettings",
    "PoolingConfig",
    # Strategies
    "StrategyDescriptor",
    "StrategyEvaluator",
    "StrategyType",
    "register_strategy",
    # Exceptions
    "CacheError",
    "CacheBackendError",
    "CacheConfigError",
    "CacheConnectionError",
    "CacheReadError",
    # Utilities
    "short_hex_hash",
]
