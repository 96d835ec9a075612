"""Key derivation from the configured secret.

The cache is encrypted with a key derived from an operator-supplied secret
string. Derivation is deterministic so every process sharing the secret can
read entries written by the others.
"""

from __future__ import annotations

import hashlib

from resultcache.encryption.base import EncryptionAlgorithm, EncryptionConfigError

MIN_SECRET_LENGTH = 16

# Fixed application salt; the secret itself carries the entropy.
KEY_SALT = b"resultcache.encryption.query-cache"
PBKDF2_ITERATIONS = 210_000


def validate_secret(secret: str) -> None:
    """Reject secrets that are too short to be meaningful."""
    if len(secret) < MIN_SECRET_LENGTH:
        raise EncryptionConfigError(
            f"Encryption secret key must be at least {MIN_SECRET_LENGTH} characters"
        )


def derive_key(
    secret: str | bytes,
    algorithm: EncryptionAlgorithm = EncryptionAlgorithm.AES_256_GCM,
    iterations: int = PBKDF2_ITERATIONS,
) -> bytes:
    """Derive a key for ``algorithm`` from ``secret`` using PBKDF2-HMAC-SHA512.

    Args:
        secret: Operator-supplied secret string.
        algorithm: Algorithm the key is for (determines key length).
        iterations: PBKDF2 iteration count.

    Returns:
        Raw key bytes.
    """
    if isinstance(secret, str):
        validate_secret(secret)
        secret = secret.encode("utf-8")
    elif len(secret) < MIN_SECRET_LENGTH:
        raise EncryptionConfigError(
            f"Encryption secret key must be at least {MIN_SECRET_LENGTH} bytes"
        )

    return hashlib.pbkdf2_hmac(
        "sha512",
        secret,
        KEY_SALT,
        iterations,
        dklen=algorithm.key_size,
    )
