"""
PIN-Based Key Wrapping

Protects long-lived credential blobs (e.g. a service-account key or a
refresh token) behind a short numeric PIN.

TRADEOFF: the wrapping key is a single unsalted SHA-256 of the PIN. A
6-digit PIN hashed once falls to offline brute force in seconds, so this
path is only for material that is itself short-lived or revocable. In
exchange the result is a compact JWE string (A256KW key wrap, A256GCM
content encryption) that fits in a single text field and names its own
algorithms in its header.

For ledger data use `PasswordCipher` instead.
"""

import hashlib

from jwcrypto import jwe, jwk
from jwcrypto.common import JWException, base64url_encode, json_encode

from utility_splitter.crypto.service import CryptoError, DecryptionFailed


MIN_PIN_LENGTH = 6

KEY_WRAP_ALGORITHM = "A256KW"
CONTENT_ALGORITHM = "A256GCM"


class InvalidPin(CryptoError):
    """PIN does not meet the length/digit policy."""
    pass


def validate_pin(pin: str) -> str:
    """PINs are at least six digits."""
    if len(pin) < MIN_PIN_LENGTH or not pin.isdigit():
        raise InvalidPin(f"PIN must be at least {MIN_PIN_LENGTH} digits")
    return pin


def derive_wrapping_key(pin: str) -> jwk.JWK:
    """Deterministic 256-bit wrapping key: SHA-256(pin), no salt."""
    digest = hashlib.sha256(pin.encode("utf-8")).digest()
    return jwk.JWK(kty="oct", k=base64url_encode(digest))


def wrap_secret(secret: str, pin: str) -> str:
    """
    Seal `secret` under `pin` as a compact JWE token.

    Raises:
        InvalidPin: if the PIN fails the policy
    """
    key = derive_wrapping_key(validate_pin(pin))
    token = jwe.JWE(
        secret.encode("utf-8"),
        protected=json_encode({
            "alg": KEY_WRAP_ALGORITHM,
            "enc": CONTENT_ALGORITHM,
        }),
    )
    token.add_recipient(key)
    return token.serialize(compact=True)


def unwrap_secret(token: str, pin: str) -> str:
    """
    Open a token produced by `wrap_secret`.

    Raises:
        DecryptionFailed: wrong PIN, tampered or malformed token
    """
    key = derive_wrapping_key(pin)
    sealed = jwe.JWE()
    try:
        sealed.deserialize(token, key=key)
        return sealed.payload.decode("utf-8")
    except (JWException, ValueError, TypeError):
        raise DecryptionFailed() from None
