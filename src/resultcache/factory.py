"""Factory functions for creating cache backends.

Backends are looked up by name in a registry. New backends can be
registered at runtime with ``register_cache_backend``.
"""

from __future__ import annotations

from typing import Any, Callable

from resultcache.base import CacheBackend, CacheBackendError
from resultcache.config import CacheConfig

BackendConstructor = Callable[..., CacheBackend]

_backend_registry: dict[str, BackendConstructor] = {}

_BUILTIN_ALIASES = {
    "database": "database",
    "db": "database",
    "sql": "database",
    "memory": "memory",
}


def register_cache_backend(
    name: str,
) -> Callable[[BackendConstructor], BackendConstructor]:
    """Decorator to register a cache backend.

    Example:
        >>> @register_cache_backend("redis")
        ... class RedisCacheBackend(CacheBackend):
        ...     ...
    """

    def decorator(cls: BackendConstructor) -> BackendConstructor:
        _backend_registry[name.lower().strip()] = cls
        return cls

    return decorator


def get_cache_backend(backend: str = "database", **kwargs: Any) -> CacheBackend:
    """Create a cache backend by name.

    Args:
        backend: Backend name. Options:
            - "database" (or "db", "sql"): SQL database storage
            - "memory": In-memory storage
            - any name registered with ``register_cache_backend``
        **kwargs: Backend-specific configuration options.

    Raises:
        CacheBackendError: If the backend is unknown.

    Example:
        >>> backend = get_cache_backend("db", connection_url="sqlite:///cache.db")
    """
    backend = backend.lower().strip()

    if backend in _backend_registry:
        return _backend_registry[backend](**kwargs)

    builtin = _BUILTIN_ALIASES.get(backend)
    if builtin == "database":
        from resultcache.backends.database import DatabaseCacheBackend

        return DatabaseCacheBackend(**kwargs)
    if builtin == "memory":
        from resultcache.backends.memory import MemoryCacheBackend

        return MemoryCacheBackend(**kwargs)

    raise CacheBackendError(backend, list_available_backends())


def list_available_backends() -> list[str]:
    """Names accepted by ``get_cache_backend``."""
    return sorted(set(_BUILTIN_ALIASES) | set(_backend_registry))


def backend_from_config(
    config: CacheConfig | None = None,
    backend: str = "database",
    **kwargs: Any,
) -> CacheBackend:
    """Create a backend from a ``CacheConfig`` (read from the environment by default)."""
    config = config or CacheConfig.from_env()
    if _BUILTIN_ALIASES.get(backend.lower().strip()) == "memory":
        return get_cache_backend(backend, encryption=config.encryption, **kwargs)
    return get_cache_backend(backend, config=config, **kwargs)
