"""Encryption package: password ciphers and PIN key wrapping."""

from utility_splitter.crypto.pin import (
    InvalidPin,
    derive_wrapping_key,
    unwrap_secret,
    validate_pin,
    wrap_secret,
)
from utility_splitter.crypto.service import (
    CryptoError,
    DecryptionFailed,
    EncryptedPackage,
    PasswordCipher,
    decrypt,
    encrypt,
    looks_encrypted,
)

__all__ = [
    "CryptoError",
    "DecryptionFailed",
    "EncryptedPackage",
    "InvalidPin",
    "PasswordCipher",
    "decrypt",
    "derive_wrapping_key",
    "encrypt",
    "looks_encrypted",
    "unwrap_secret",
    "validate_pin",
    "wrap_secret",
]
