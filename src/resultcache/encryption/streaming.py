"""Chunked streaming encryption for cached payloads.

Payloads are encrypted in fixed-size chunks so that large results can be
decrypted incrementally while they are handed to a reader, instead of being
buffered whole in memory.

Wire format:
    header || chunk* || end marker

    header      magic "RCSE" (4) | version (1) | algorithm id (1) |
                chunk size (4, big endian) | nonce length (1) | base nonce |
                crc32 of the preceding header bytes (4)
    chunk       length (4, big endian) | ciphertext || tag
    end marker  length 0 (4 bytes of zero)

Each chunk's nonce is the base nonce XOR the chunk index, so chunks cannot
be reordered without failing authentication. A payload that ends before the
end marker is rejected.

Example:
    >>> sealed = encrypt_payload(b"rows...", key)
    >>> with DecryptingReader(StreamingDecryptor(key, io.BytesIO(sealed))) as r:
    ...     r.read()
    b'rows...'
"""

from __future__ import annotations

import io
import struct
import zlib
from dataclasses import dataclass
from typing import Any, BinaryIO, Iterator

from resultcache.encryption.base import (
    DecryptionError,
    EncryptionAlgorithm,
    EncryptionError,
    IntegrityError,
    generate_nonce,
)
from resultcache.encryption.providers import get_encryptor

MAGIC = b"RCSE"
FORMAT_VERSION = 1
DEFAULT_CHUNK_SIZE = 64 * 1024

_LENGTH = struct.Struct(">I")
# magic, version, algorithm id, chunk size, nonce length
_HEADER_PREFIX = struct.Struct(">4sBBIB")
# Longest possible header: prefix, a nonce of up to 255 bytes, crc32.
HEADER_PEEK_SIZE = _HEADER_PREFIX.size + 255 + 4


def derive_chunk_nonce(base_nonce: bytes, chunk_index: int, nonce_size: int = 12) -> bytes:
    """Derive the nonce for a chunk: base nonce XOR chunk index."""
    if len(base_nonce) < nonce_size:
        base_nonce = base_nonce + b"\x00" * (nonce_size - len(base_nonce))
    nonce_int = int.from_bytes(base_nonce[:nonce_size], "big")
    return (nonce_int ^ chunk_index).to_bytes(nonce_size, "big")


def is_encrypted_payload(head: bytes) -> bool:
    """Check whether the leading bytes of a payload form a valid stream header.

    Magic, version, algorithm id and header checksum must all match, so
    plaintext that merely starts with the magic is not mistaken for
    ciphertext. ``head`` should hold at least ``HEADER_PEEK_SIZE`` bytes
    (or the whole payload, if shorter).
    """
    if head[: len(MAGIC)] != MAGIC:
        return False
    try:
        StreamingHeader.read_from(io.BytesIO(head))
    except DecryptionError:
        return False
    return True


@dataclass
class StreamingHeader:
    """Header of a streaming-encrypted payload."""

    algorithm: EncryptionAlgorithm = EncryptionAlgorithm.AES_256_GCM
    chunk_size: int = DEFAULT_CHUNK_SIZE
    base_nonce: bytes = b""
    version: int = FORMAT_VERSION

    def to_bytes(self) -> bytes:
        """Serialize header to bytes."""
        header = (
            _HEADER_PREFIX.pack(
                MAGIC,
                self.version,
                self.algorithm.header_id,
                self.chunk_size,
                len(self.base_nonce),
            )
            + self.base_nonce
        )
        return header + zlib.crc32(header).to_bytes(4, "big")

    @classmethod
    def read_from(cls, source: BinaryIO) -> "StreamingHeader":
        """Read and verify a header from the start of ``source``."""
        prefix = source.read(_HEADER_PREFIX.size)
        if len(prefix) < _HEADER_PREFIX.size:
            raise DecryptionError("Incomplete streaming header")

        magic, version, algo_id, chunk_size, nonce_len = _HEADER_PREFIX.unpack(prefix)
        if magic != MAGIC:
            raise DecryptionError("Invalid streaming encryption header")
        if version != FORMAT_VERSION:
            raise DecryptionError(f"Unsupported streaming format version: {version}")

        rest = source.read(nonce_len + 4)
        if len(rest) < nonce_len + 4:
            raise DecryptionError("Incomplete streaming header")
        base_nonce, checksum = rest[:nonce_len], rest[nonce_len:]

        if zlib.crc32(prefix + base_nonce).to_bytes(4, "big") != checksum:
            raise IntegrityError("Header checksum mismatch")

        return cls(
            algorithm=EncryptionAlgorithm.from_header_id(algo_id),
            chunk_size=chunk_size,
            base_nonce=base_nonce,
            version=version,
        )

    @property
    def size(self) -> int:
        """Get header size in bytes."""
        return _HEADER_PREFIX.size + len(self.base_nonce) + 4


class StreamingEncryptor:
    """Chunked encryption into a binary output stream.

    Example:
        >>> output = io.BytesIO()
        >>> with StreamingEncryptor(key, output) as enc:
        ...     enc.write(data)
    """

    def __init__(
        self,
        key: bytes,
        output: BinaryIO,
        algorithm: EncryptionAlgorithm = EncryptionAlgorithm.AES_256_GCM,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        aad: bytes | None = None,
    ) -> None:
        if chunk_size <= 0:
            raise EncryptionError("chunk_size must be positive")
        self._key = key
        self._output = output
        self._algorithm = algorithm
        self._chunk_size = chunk_size
        self._aad = aad
        self._encryptor = get_encryptor(algorithm)
        self._base_nonce = generate_nonce(algorithm)
        self._chunk_index = 0
        self._buffer = bytearray()
        self._header_written = False
        self._finalized = False

    def _write_header(self) -> None:
        if self._header_written:
            return
        header = StreamingHeader(
            algorithm=self._algorithm,
            chunk_size=self._chunk_size,
            base_nonce=self._base_nonce,
        )
        self._output.write(header.to_bytes())
        self._header_written = True

    def _write_chunk(self, plaintext: bytes) -> None:
        nonce = derive_chunk_nonce(
            self._base_nonce, self._chunk_index, self._algorithm.nonce_size
        )
        sealed = self._encryptor.encrypt(plaintext, self._key, nonce, self._aad)
        self._output.write(_LENGTH.pack(len(sealed)) + sealed)
        self._chunk_index += 1

    def write(self, data: bytes) -> int:
        """Buffer ``data``, encrypting every complete chunk.

        Returns:
            Number of plaintext bytes accepted.
        """
        if self._finalized:
            raise EncryptionError("Cannot write to finalized stream")

        self._write_header()
        self._buffer.extend(data)
        while len(self._buffer) >= self._chunk_size:
            self._write_chunk(bytes(self._buffer[: self._chunk_size]))
            del self._buffer[: self._chunk_size]
        return len(data)

    def finalize(self) -> None:
        """Encrypt any buffered data and write the end marker."""
        if self._finalized:
            return
        self._write_header()
        if self._buffer:
            self._write_chunk(bytes(self._buffer))
            self._buffer.clear()
        self._output.write(_LENGTH.pack(0))
        self._finalized = True

    def __enter__(self) -> "StreamingEncryptor":
        return self

    def __exit__(self, exc_type: Any, *args: Any) -> None:
        if exc_type is None:
            self.finalize()


class StreamingDecryptor:
    """Chunk-by-chunk decryption of a streaming-encrypted payload.

    The header is read on construction, so a wrong magic or a corrupted
    header fails immediately.
    """

    def __init__(
        self,
        key: bytes,
        source: BinaryIO,
        aad: bytes | None = None,
        close_source: bool = True,
    ) -> None:
        self._key = key
        self._source = source
        self._aad = aad
        self._close_source = close_source
        self._header = StreamingHeader.read_from(source)
        self._algorithm = self._header.algorithm
        self._decryptor = get_encryptor(self._algorithm)
        self._chunk_index = 0
        self._finished = False

    @property
    def header(self) -> StreamingHeader:
        """Header of the payload being decrypted."""
        return self._header

    def read_chunk(self) -> bytes | None:
        """Decrypt the next chunk.

        Returns:
            Plaintext chunk, or None after the end marker.

        Raises:
            DecryptionError: If the payload is truncated.
            IntegrityError: If a chunk fails authentication.
        """
        if self._finished:
            return None

        len_data = self._source.read(_LENGTH.size)
        if len(len_data) < _LENGTH.size:
            raise DecryptionError("Truncated encrypted payload: missing end marker")

        (chunk_len,) = _LENGTH.unpack(len_data)
        if chunk_len == 0:
            self._finished = True
            return None

        sealed = self._source.read(chunk_len)
        if len(sealed) < chunk_len:
            raise DecryptionError("Incomplete chunk data")

        nonce = derive_chunk_nonce(
            self._header.base_nonce, self._chunk_index, self._algorithm.nonce_size
        )
        try:
            plaintext = self._decryptor.decrypt(sealed, self._key, nonce, self._aad)
        except DecryptionError as e:
            raise IntegrityError(
                f"Chunk {self._chunk_index} authentication failed: {e}",
                self._algorithm.value,
            ) from e

        self._chunk_index += 1
        return plaintext

    def __iter__(self) -> Iterator[bytes]:
        while True:
            chunk = self.read_chunk()
            if chunk is None:
                break
            yield chunk

    def read_all(self) -> bytes:
        """Read and decrypt all remaining data into memory."""
        return b"".join(self)

    def close(self) -> None:
        """Close the decryptor and, if owned, its source stream."""
        if self._close_source:
            self._source.close()

    def __enter__(self) -> "StreamingDecryptor":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class DecryptingReader(io.RawIOBase):
    """Readable binary stream over a ``StreamingDecryptor``.

    Decrypts lazily as the consumer reads, one chunk at a time.
    """

    def __init__(self, decryptor: StreamingDecryptor) -> None:
        super().__init__()
        self._decryptor = decryptor
        self._pending = b""
        self._offset = 0

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: Any) -> int:
        while self._offset >= len(self._pending):
            chunk = self._decryptor.read_chunk()
            if chunk is None:
                return 0
            self._pending, self._offset = chunk, 0

        view = memoryview(buffer).cast("B")
        n = min(len(view), len(self._pending) - self._offset)
        view[:n] = self._pending[self._offset : self._offset + n]
        self._offset += n
        return n

    def close(self) -> None:
        if not self.closed:
            try:
                self._decryptor.close()
            finally:
                super().close()


def encrypt_payload(
    data: bytes,
    key: bytes,
    algorithm: EncryptionAlgorithm = EncryptionAlgorithm.AES_256_GCM,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> bytes:
    """Encrypt ``data`` into the streaming format in one call."""
    output = io.BytesIO()
    with StreamingEncryptor(key, output, algorithm=algorithm, chunk_size=chunk_size) as enc:
        enc.write(data)
    return output.getvalue()
