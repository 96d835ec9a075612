"""Cache backend implementations.

Available backends:
- DatabaseCacheBackend: SQL database storage (SQLAlchemy)
- MemoryCacheBackend: In-memory storage (for testing)
"""

from resultcache.backends.connection import ConnectionScope
from resultcache.backends.database import DatabaseCacheBackend
from resultcache.backends.memory import MemoryCacheBackend

__all__ = [
    "ConnectionScope",
    "DatabaseCacheBackend",
    "MemoryCacheBackend",
]
