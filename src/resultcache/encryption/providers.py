"""AEAD ciphers used to seal individual payload chunks.

Every supported algorithm is an AEAD construction from ``cryptography`` with
a 12-byte nonce and a 16-byte tag, so a single wrapper covers all of them.
The streaming layer picks the nonce for each chunk; this module only seals
and opens one buffer at a time.

Example:
    >>> cipher = get_encryptor("chacha20-poly1305")
    >>> key, nonce = cipher.generate_key(), cipher.generate_nonce()
    >>> cipher.decrypt(cipher.encrypt(b"rows", key, nonce), key, nonce)
    b'rows'
"""

from __future__ import annotations

from typing import Callable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from resultcache.encryption.base import (
    DecryptionError,
    EncryptionAlgorithm,
    EncryptionError,
    IntegrityError,
    UnsupportedAlgorithmError,
    generate_key,
    generate_nonce,
)

AeadPrimitive = AESGCM | ChaCha20Poly1305

# Key bytes -> primitive, per algorithm. AESGCM picks AES-128 or AES-256
# from the key length.
_PRIMITIVES: dict[EncryptionAlgorithm, Callable[[bytes], AeadPrimitive]] = {
    EncryptionAlgorithm.AES_128_GCM: AESGCM,
    EncryptionAlgorithm.AES_256_GCM: AESGCM,
    EncryptionAlgorithm.CHACHA20_POLY1305: ChaCha20Poly1305,
}


class AeadEncryptor:
    """Seals and opens buffers with one AEAD algorithm.

    Sealed output is ``ciphertext || tag``.
    """

    def __init__(self, algorithm: EncryptionAlgorithm) -> None:
        self.algorithm = algorithm
        self._primitive = _PRIMITIVES[algorithm]

    def __repr__(self) -> str:
        return f"AeadEncryptor({self.algorithm.value!r})"

    def generate_key(self) -> bytes:
        return generate_key(self.algorithm)

    def generate_nonce(self) -> bytes:
        return generate_nonce(self.algorithm)

    def _open_primitive(self, key: bytes) -> AeadPrimitive:
        expected = self.algorithm.key_size
        if len(key) != expected:
            raise EncryptionError(
                f"{self.algorithm.value} needs a {expected}-byte key, got {len(key)}",
                self.algorithm.value,
            )
        return self._primitive(key)

    def encrypt(
        self,
        plaintext: bytes,
        key: bytes,
        nonce: bytes,
        aad: bytes | None = None,
    ) -> bytes:
        return self._open_primitive(key).encrypt(nonce, plaintext, aad)

    def decrypt(
        self,
        sealed: bytes,
        key: bytes,
        nonce: bytes,
        aad: bytes | None = None,
    ) -> bytes:
        """Open ``sealed`` and return the plaintext.

        Raises:
            IntegrityError: If the tag does not verify (wrong key, wrong
                nonce or modified bytes).
            DecryptionError: If the input is malformed, e.g. a bad nonce length.
        """
        primitive = self._open_primitive(key)
        try:
            return primitive.decrypt(nonce, sealed, aad)
        except InvalidTag as e:
            raise IntegrityError(
                "Chunk tag did not verify", self.algorithm.value
            ) from e
        except ValueError as e:
            raise DecryptionError(str(e), self.algorithm.value) from e


def get_encryptor(algorithm: str | EncryptionAlgorithm) -> AeadEncryptor:
    """Resolve an algorithm (enum or name such as ``"aes-256-gcm"``).

    Raises:
        UnsupportedAlgorithmError: For unknown names.
    """
    try:
        resolved = EncryptionAlgorithm(algorithm)
    except ValueError:
        raise UnsupportedAlgorithmError(
            str(algorithm), available=[a.value for a in EncryptionAlgorithm]
        )
    return AeadEncryptor(resolved)
