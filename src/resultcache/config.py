"""Configuration for the result cache.

Configuration is plain dataclasses. ``CacheConfig.from_env()`` builds one
from ``RESULTCACHE_*`` environment variables for processes that are
configured by their environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from resultcache.base import CacheConfigError
from resultcache.encryption.base import EncryptionAlgorithm
from resultcache.encryption.keys import MIN_SECRET_LENGTH
from resultcache.encryption.streaming import DEFAULT_CHUNK_SIZE

# Global retention horizon for purge: 90 days.
DEFAULT_MAX_ENTRY_AGE_SECONDS = 90 * 24 * 60 * 60

ENV_PREFIX = "RESULTCACHE_"


@dataclass
class PoolingConfig:
    """Connection pooling configuration.

    Attributes:
        pool_size: Number of connections to maintain in pool.
        max_overflow: Maximum overflow connections beyond pool_size.
        pool_timeout: Seconds to wait for an available connection.
        pool_recycle: Seconds before a connection is recycled (-1 = never).
        pool_pre_ping: Whether to test connections before use.
    """

    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: float = 30.0
    pool_recycle: int = 3600
    pool_pre_ping: bool = True


@dataclass
class EncryptionSettings:
    """Payload encryption settings.

    Attributes:
        secret_key: Secret to derive the encryption key from. None stores
            payloads unencrypted.
        algorithm: AEAD algorithm for new payloads.
        chunk_size: Plaintext chunk size of the streaming format.
    """

    secret_key: str | None = None
    algorithm: str = EncryptionAlgorithm.AES_256_GCM.value
    chunk_size: int = DEFAULT_CHUNK_SIZE


@dataclass
class CacheConfig:
    """Configuration for the result cache.

    Attributes:
        connection_url: SQLAlchemy connection URL of the cache database.
        table_name: Name of the cache table.
        create_tables: Whether to create the table on initialization.
        echo: Whether to echo SQL statements.
        pooling: Connection pooling configuration.
        encryption: Payload encryption settings.
        max_entry_age_seconds: Entries older than this are purged.
    """

    connection_url: str = "sqlite:///.resultcache/cache.db"
    table_name: str = "query_cache"
    create_tables: bool = True
    echo: bool = False
    pooling: PoolingConfig = field(default_factory=PoolingConfig)
    encryption: EncryptionSettings = field(default_factory=EncryptionSettings)
    max_entry_age_seconds: float = DEFAULT_MAX_ENTRY_AGE_SECONDS

    def validate(self) -> None:
        """Validate configuration.

        Raises:
            CacheConfigError: If any value is out of range.
        """
        if not self.connection_url:
            raise CacheConfigError("connection_url must not be empty")
        if not self.table_name.isidentifier():
            raise CacheConfigError(f"Invalid table name: {self.table_name!r}")
        if self.pooling.pool_size < 1:
            raise CacheConfigError("pool_size must be at least 1")
        if self.pooling.max_overflow < 0:
            raise CacheConfigError("max_overflow must be non-negative")
        if self.pooling.pool_timeout <= 0:
            raise CacheConfigError("pool_timeout must be positive")
        if self.max_entry_age_seconds <= 0:
            raise CacheConfigError("max_entry_age_seconds must be positive")
        if self.encryption.chunk_size <= 0:
            raise CacheConfigError("encryption chunk_size must be positive")
        try:
            EncryptionAlgorithm(self.encryption.algorithm)
        except ValueError:
            raise CacheConfigError(
                f"Unsupported encryption algorithm: {self.encryption.algorithm}"
            )
        secret = self.encryption.secret_key
        if secret is not None and len(secret) < MIN_SECRET_LENGTH:
            raise CacheConfigError(
                f"Encryption secret key must be at least {MIN_SECRET_LENGTH} characters"
            )

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "CacheConfig":
        """Build configuration from environment variables.

        Environment variables:
            RESULTCACHE_CONNECTION_URL: SQLAlchemy connection URL
            RESULTCACHE_TABLE_NAME: Cache table name (default: query_cache)
            RESULTCACHE_ECHO: Echo SQL statements (default: false)
            RESULTCACHE_POOL_SIZE: Connection pool size (default: 5)
            RESULTCACHE_MAX_OVERFLOW: Pool overflow (default: 10)
            RESULTCACHE_POOL_TIMEOUT: Seconds to wait for a connection (default: 30)
            RESULTCACHE_ENCRYPTION_SECRET_KEY: Secret for payload encryption
            RESULTCACHE_ENCRYPTION_ALGORITHM: aes-256-gcm, aes-128-gcm or
                chacha20-poly1305 (default: aes-256-gcm)
            RESULTCACHE_MAX_ENTRY_AGE_SECONDS: Purge horizon (default: 90 days)

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        def get(key: str, default: str | None = None) -> str | None:
            value = env.get(ENV_PREFIX + key)
            return value if value not in (None, "") else default

        def get_bool(key: str, default: bool = False) -> bool:
            value = (get(key) or "").lower()
            if value in ("true", "1", "yes", "on"):
                return True
            if value in ("false", "0", "no", "off"):
                return False
            return default

        def get_float(key: str, default: float) -> float:
            try:
                return float(get(key, str(default)))
            except ValueError:
                return default

        def get_int(key: str, default: int) -> int:
            try:
                return int(get(key, str(default)))
            except ValueError:
                return default

        pooling = PoolingConfig(
            pool_size=get_int("POOL_SIZE", defaults.pooling.pool_size),
            max_overflow=get_int("MAX_OVERFLOW", defaults.pooling.max_overflow),
            pool_timeout=get_float("POOL_TIMEOUT", defaults.pooling.pool_timeout),
        )
        encryption = EncryptionSettings(
            secret_key=get("ENCRYPTION_SECRET_KEY"),
            algorithm=get("ENCRYPTION_ALGORITHM", defaults.encryption.algorithm),
        )
        return cls(
            connection_url=get("CONNECTION_URL", defaults.connection_url),
            table_name=get("TABLE_NAME", defaults.table_name),
            echo=get_bool("ECHO", defaults.echo),
            pooling=pooling,
            encryption=encryption,
            max_entry_age_seconds=get_float(
                "MAX_ENTRY_AGE_SECONDS", defaults.max_entry_age_seconds
            ),
        )
