"""Encryption codec used by cache backends.

Encryption is optional. Without a configured secret the codec passes bytes
through unchanged; on read it detects the streaming header, so payloads
written before encryption was enabled stay readable.
"""

from __future__ import annotations

import io
import logging
from typing import BinaryIO

from resultcache.encryption.base import DecryptionError, EncryptionAlgorithm
from resultcache.encryption.keys import derive_key
from resultcache.encryption.streaming import (
    DEFAULT_CHUNK_SIZE,
    HEADER_PEEK_SIZE,
    MAGIC,
    DecryptingReader,
    StreamingDecryptor,
    encrypt_payload,
    is_encrypted_payload,
)

logger = logging.getLogger(__name__)


def _peek(stream: BinaryIO, size: int) -> tuple[bytes, BinaryIO]:
    """Look at the first ``size`` bytes without consuming them.

    Returns the bytes and a stream positioned where ``stream`` was.
    """
    if stream.seekable():
        position = stream.tell()
        head = stream.read(size)
        stream.seek(position)
        return head, stream
    peek = getattr(stream, "peek", None)
    if peek is not None:
        head = peek(size)[:size]
        if len(head) >= size:
            return head, stream
    buffered = io.BytesIO(stream.read())
    stream.close()
    return buffered.getvalue()[:size], buffered


class EncryptionCodec:
    """Encrypts cache payloads for storage and decrypts them as streams.

    Example:
        >>> codec = EncryptionCodec(secret_key="a-long-enough-secret")
        >>> stored = codec.maybe_encrypt_for_stream(b"results")
        >>> with codec.maybe_decrypt_stream(io.BytesIO(stored)) as stream:
        ...     stream.read()
        b'results'
    """

    def __init__(
        self,
        secret_key: str | None = None,
        algorithm: str | EncryptionAlgorithm = EncryptionAlgorithm.AES_256_GCM,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """Initialize the codec.

        Args:
            secret_key: Secret to derive the key from. None disables encryption.
            algorithm: Algorithm for newly written payloads.
            chunk_size: Plaintext chunk size for newly written payloads.

        Raises:
            EncryptionConfigError: If the secret is too short.
        """
        self._algorithm = EncryptionAlgorithm(algorithm)
        self._chunk_size = chunk_size
        self._secret_key = secret_key
        self._keys: dict[EncryptionAlgorithm, bytes] = {}
        if secret_key is not None:
            self._keys[self._algorithm] = derive_key(secret_key, self._algorithm)

    @property
    def enabled(self) -> bool:
        """Whether payloads are encrypted on write."""
        return self._secret_key is not None

    @property
    def algorithm(self) -> EncryptionAlgorithm:
        return self._algorithm

    def _key_for(self, algorithm: EncryptionAlgorithm) -> bytes:
        if self._secret_key is None:
            raise DecryptionError(
                "Payload is encrypted but no encryption secret key is configured"
            )
        if algorithm not in self._keys:
            self._keys[algorithm] = derive_key(self._secret_key, algorithm)
        return self._keys[algorithm]

    def maybe_encrypt_for_stream(self, data: bytes) -> bytes:
        """Encrypt ``data`` into the streaming format, if encryption is enabled."""
        if not self.enabled:
            return data
        return encrypt_payload(
            data,
            self._key_for(self._algorithm),
            algorithm=self._algorithm,
            chunk_size=self._chunk_size,
        )

    def maybe_decrypt_stream(self, stream: BinaryIO) -> BinaryIO:
        """Wrap ``stream`` so that reading it yields plaintext.

        Payloads without a valid streaming header are returned as they
        are. Closing the returned stream closes ``stream``.

        Raises:
            DecryptionError: If the payload is encrypted and no key is
                configured.
        """
        head, stream = _peek(stream, HEADER_PEEK_SIZE)
        if not is_encrypted_payload(head):
            if self.enabled:
                logger.debug("Reading unencrypted cached payload")
            return stream
        try:
            algorithm = EncryptionAlgorithm.from_header_id(head[len(MAGIC) + 1])
            decryptor = StreamingDecryptor(self._key_for(algorithm), stream)
        except Exception:
            stream.close()
            raise
        return DecryptingReader(decryptor)

    def decrypt(self, data: bytes) -> bytes:
        """Decrypt a whole payload into memory."""
        with self.maybe_decrypt_stream(io.BytesIO(data)) as stream:
            return stream.read()
