"""
Password-Based Encryption for Stored Ledger Data

DESIGN DECISION: Everything the ledger writes to local or remote storage
can be sealed with a user password:

- PBKDF2-HMAC-SHA256 (>= 100,000 iterations) turns the password and a
  fresh random salt into a 256-bit key.
- AES-256-GCM encrypts the UTF-8 plaintext under a fresh random nonce.
- The package carries ciphertext, salt and nonce, each base64 encoded,
  so decryption needs nothing but the package and the password.

Salt and nonce are generated on EVERY call. Reusing a nonce under the
same key breaks GCM confidentiality and integrity.

CRITICAL: decryption failures are reported as one error type. A wrong
password, a flipped byte and a truncated package all raise
DecryptionFailed with the same message.
"""

import asyncio
import base64
import binascii
import json
import os
from collections.abc import Mapping
from typing import Any, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import BaseModel, ConfigDict

from utility_splitter.config import CryptoSettings, get_settings


KEY_LENGTH = 32

DECRYPTION_FAILED_MESSAGE = "Invalid password or corrupted data"


class CryptoError(Exception):
    """Base exception for crypto operations."""
    pass


class DecryptionFailed(CryptoError):
    """
    Package could not be decrypted.

    Deliberately does not say whether the password was wrong or the data
    was damaged.
    """

    def __init__(self, message: str = DECRYPTION_FAILED_MESSAGE):
        super().__init__(message)


class EncryptedPackage(BaseModel):
    """
    Wire format: {"data": b64, "salt": b64, "iv": b64}.

    Stored as a JSON object, never re-stringified, so any store holding
    ledger records can tell an encrypted value from a plain one.
    """
    model_config = ConfigDict(frozen=True)

    data: str
    salt: str
    iv: str

    def to_wire(self) -> dict[str, str]:
        return {"data": self.data, "salt": self.salt, "iv": self.iv}


PackageLike = Union[EncryptedPackage, Mapping, str]


def looks_encrypted(value: Any) -> bool:
    """True for mappings shaped like an EncryptedPackage."""
    return (
        isinstance(value, Mapping)
        and all(isinstance(value.get(field), str) for field in ("data", "salt", "iv"))
    )


def _b64encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


class PasswordCipher:
    """
    Encrypts and decrypts strings under a password.

    Stateless apart from its settings; one instance can serve every key in
    the ledger.
    """

    def __init__(self, settings: Optional[CryptoSettings] = None):
        self._settings = settings or get_settings().crypto

    def _derive_key(self, password: str, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self._settings.pbkdf2_iterations,
        )
        return kdf.derive(password.encode("utf-8"))

    def encrypt_sync(self, plaintext: str, password: str) -> EncryptedPackage:
        """Blocking variant of `encrypt`."""
        salt = os.urandom(self._settings.salt_length)
        nonce = os.urandom(self._settings.nonce_length)

        key = self._derive_key(password, salt)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)

        return EncryptedPackage(
            data=_b64encode(ciphertext),
            salt=_b64encode(salt),
            iv=_b64encode(nonce),
        )

    def decrypt_sync(self, package: PackageLike, password: str) -> str:
        """Blocking variant of `decrypt`."""
        try:
            pkg = _coerce_package(package)
            salt = _b64decode(pkg.salt)
            nonce = _b64decode(pkg.iv)
            ciphertext = _b64decode(pkg.data)

            key = self._derive_key(password, salt)
            plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, ValueError, TypeError, binascii.Error):
            # ValueError covers bad JSON, missing fields, empty nonce and
            # invalid UTF-8 (UnicodeDecodeError)
            raise DecryptionFailed() from None

    async def encrypt(self, plaintext: str, password: str) -> EncryptedPackage:
        """Encrypt `plaintext`; key derivation runs in a worker thread."""
        return await asyncio.to_thread(self.encrypt_sync, plaintext, password)

    async def decrypt(self, package: PackageLike, password: str) -> str:
        """
        Decrypt a package produced by `encrypt`.

        Raises:
            DecryptionFailed: wrong password, tampered or malformed package
        """
        return await asyncio.to_thread(self.decrypt_sync, package, password)


def _coerce_package(package: PackageLike) -> EncryptedPackage:
    if isinstance(package, EncryptedPackage):
        return package
    if isinstance(package, str):
        package = json.loads(package)
    if not looks_encrypted(package):
        raise ValueError("not an encrypted package")
    return EncryptedPackage(
        data=package["data"],
        salt=package["salt"],
        iv=package["iv"],
    )


async def encrypt(plaintext: str, password: str) -> EncryptedPackage:
    """Encrypt with the configured settings."""
    return await PasswordCipher().encrypt(plaintext, password)


async def decrypt(package: PackageLike, password: str) -> str:
    """Decrypt with the configured settings. Raises DecryptionFailed."""
    return await PasswordCipher().decrypt(package, password)
