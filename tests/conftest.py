"""Shared fixtures for result cache tests."""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone

import pytest

from resultcache.backends.database import DatabaseCacheBackend, clear_compiled_cache
from resultcache.config import CacheConfig, EncryptionSettings

SECRET = "correct-horse-battery-staple"


class FakeClock:
    """Clock whose time only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


def make_hash(text: str) -> bytes:
    return hashlib.sha256(text.encode()).digest()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def query_hash() -> bytes:
    return make_hash("SELECT * FROM venues")


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cache.db'}"


@pytest.fixture
def backend(db_url, clock):
    """Encrypted SQLite backend driven by the fake clock."""
    config = CacheConfig(
        connection_url=db_url,
        encryption=EncryptionSettings(secret_key=SECRET),
    )
    backend = DatabaseCacheBackend(config, clock=clock)
    yield backend
    backend.close()
    clear_compiled_cache()
