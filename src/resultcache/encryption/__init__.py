"""Encryption for cached query results.

Payloads are encrypted with an AEAD cipher in a chunked streaming format so
they can be decrypted incrementally while being read:

- base: exceptions and algorithm definitions
- providers: AES-GCM and ChaCha20-Poly1305 ciphers (requires cryptography)
- keys: key derivation from the configured secret
- streaming: chunked wire format, encryptor, decryptor and reader
- codec: the optional encrypt/decrypt layer used by cache backends
"""

from resultcache.encryption.base import (
    DecryptionError,
    EncryptionAlgorithm,
    EncryptionConfigError,
    EncryptionError,
    IntegrityError,
    UnsupportedAlgorithmError,
)
from resultcache.encryption.codec import EncryptionCodec
from resultcache.encryption.keys import derive_key
from resultcache.encryption.streaming import (
    DecryptingReader,
    StreamingDecryptor,
    StreamingEncryptor,
    encrypt_payload,
)

__all__ = [
    "DecryptionError",
    "EncryptionAlgorithm",
    "EncryptionConfigError",
    "EncryptionError",
    "IntegrityError",
    "UnsupportedAlgorithmError",
    "EncryptionCodec",
    "derive_key",
    "DecryptingReader",
    "StreamingDecryptor",
    "StreamingEncryptor",
    "encrypt_payload",
]
