"""Base types for cache payload encryption.

All supported algorithms are authenticated (AEAD): a tampered or truncated
payload fails to decrypt instead of yielding garbage.
"""

from __future__ import annotations

import os
from enum import Enum


# =============================================================================
# Exceptions
# =============================================================================


class EncryptionError(Exception):
    """Base exception for encryption errors."""

    def __init__(self, message: str, algorithm: str | None = None) -> None:
        self.algorithm = algorithm
        super().__init__(f"[{algorithm}] {message}" if algorithm else message)


class DecryptionError(EncryptionError):
    """Error during decryption (missing key, corrupted data)."""

    pass


class IntegrityError(DecryptionError):
    """Data integrity verification failed."""

    pass


class EncryptionConfigError(EncryptionError):
    """Invalid encryption configuration."""

    pass


class UnsupportedAlgorithmError(EncryptionError):
    """Requested encryption algorithm is not available."""

    def __init__(self, algorithm: str, available: list[str] | None = None) -> None:
        self.available = available or []
        msg = f"Algorithm '{algorithm}' is not supported"
        if self.available:
            msg += f". Available: {', '.join(self.available)}"
        super().__init__(msg, algorithm)


# =============================================================================
# Enums
# =============================================================================


class EncryptionAlgorithm(str, Enum):
    """Supported encryption algorithms."""

    AES_128_GCM = "aes-128-gcm"
    AES_256_GCM = "aes-256-gcm"
    CHACHA20_POLY1305 = "chacha20-poly1305"

    @property
    def key_size(self) -> int:
        """Get key size in bytes."""
        if self is EncryptionAlgorithm.AES_128_GCM:
            return 16
        return 32

    @property
    def nonce_size(self) -> int:
        """Get nonce size in bytes."""
        return 12

    @property
    def tag_size(self) -> int:
        """Get authentication tag size in bytes."""
        return 16

    @property
    def header_id(self) -> int:
        """Single-byte identifier used in the streaming header."""
        return _HEADER_IDS[self]

    @classmethod
    def from_header_id(cls, value: int) -> "EncryptionAlgorithm":
        """Resolve a streaming header identifier."""
        for algorithm, header_id in _HEADER_IDS.items():
            if header_id == value:
                return algorithm
        raise DecryptionError(f"Unknown algorithm id in header: {value}")


_HEADER_IDS = {
    EncryptionAlgorithm.AES_128_GCM: 1,
    EncryptionAlgorithm.AES_256_GCM: 2,
    EncryptionAlgorithm.CHACHA20_POLY1305: 3,
}


# =============================================================================
# Utilities
# =============================================================================


def generate_key(algorithm: EncryptionAlgorithm) -> bytes:
    """Generate a random key for the given algorithm."""
    return os.urandom(algorithm.key_size)


def generate_nonce(algorithm: EncryptionAlgorithm) -> bytes:
    """Generate a random nonce for the given algorithm."""
    return os.urandom(algorithm.nonce_size)
