"""
Field Crypto Core - Authenticated encryption of short secrets.

Protects values such as *arr API keys and OIDC client secrets before they are
written to the database:
    AES-256-GCM(root encryption key, random 96-bit IV) → [ciphertext | tag 16B]

The IV and the combined ciphertext+tag blob are carried as two base64 strings
(``iv`` and ``value``) so they map onto two text columns.

Security Note:
    Never log plaintext, ciphertext or key values.
    IVs are random 96-bit; a new one is drawn for every call.
"""
import os
import hmac
import base64
import binascii
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import CipherConfigurationError, DecryptionError

logger = logging.getLogger("arr.secrets")

NONCE_SIZE = 12  # 96-bit IV
TAG_SIZE = 16  # 128-bit GCM tag
KEY_LENGTH = 32  # AES-256

KeyMaterial = Union[bytes, bytearray, str]


@dataclass(frozen=True)
class EncryptedPayload:
    """One protected value: base64 ciphertext+tag and base64 IV."""

    value: str
    iv: str

    def as_dict(self) -> dict[str, str]:
        return {"value": self.value, "iv": self.iv}


def _is_hex(text: str) -> bool:
    try:
        bytes.fromhex(text)
    except ValueError:
        return False
    return True


def decode_key(key: KeyMaterial) -> bytes:
    """Decode key material into exactly 32 raw bytes.

    Accepted forms:
        - 32 raw bytes
        - 64 hexadecimal characters
        - base64 text decoding to 32 bytes
        - 32 characters of text used as the raw key

    Raises:
        CipherConfigurationError: If the material does not decode to 32 bytes.
    """
    if isinstance(key, (bytes, bytearray)):
        raw = bytes(key)
    elif isinstance(key, str):
        if key != key.strip():
            raise CipherConfigurationError(
                "Encryption key must not carry surrounding whitespace"
            )
        text = key
        if len(text) == KEY_LENGTH * 2 and _is_hex(text):
            raw = bytes.fromhex(text)
        elif len(text) == KEY_LENGTH:
            raw = text.encode("utf-8")
        else:
            try:
                raw = base64.b64decode(text, validate=True)
            except (binascii.Error, ValueError):
                raise CipherConfigurationError(
                    "Encryption key is neither hex, base64 nor 32-byte text"
                ) from None
    else:
        raise CipherConfigurationError(
            f"Encryption key must be bytes or str, got {type(key).__name__}"
        )
    if len(raw) != KEY_LENGTH:
        raise CipherConfigurationError(
            f"Encryption key must decode to exactly {KEY_LENGTH} bytes, "
            f"got {len(raw)}"
        )
    return raw


def safe_compare(a: str, b: str) -> bool:
    """Compare two secrets in constant time.

    Strings of unequal length return False immediately; equal-length inputs
    are compared without an early exit.
    """
    left = a.encode("utf-8")
    right = b.encode("utf-8")
    if len(left) != len(right):
        return False
    return hmac.compare_digest(left, right)


def _b64decode(data: str) -> bytes:
    if not isinstance(data, str):
        raise DecryptionError()
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise DecryptionError() from None


class AuthenticatedCipher:
    """AES-256-GCM cipher bound to the root encryption key.

    Instances are immutable and may be shared between concurrent callers.
    """

    __slots__ = ("_aead",)

    def __init__(self, key: KeyMaterial):
        object.__setattr__(self, "_aead", AESGCM(decode_key(key)))

    def __setattr__(self, name, value):
        raise AttributeError("AuthenticatedCipher is immutable")

    def __repr__(self) -> str:
        return "<AuthenticatedCipher AES-256-GCM>"

    safe_compare = staticmethod(safe_compare)

    def encrypt(self, plaintext: str) -> EncryptedPayload:
        """Encrypt a string under a fresh random IV.

        Args:
            plaintext: Value to protect.

        Returns:
            EncryptedPayload with base64 ``value`` (ciphertext+tag) and ``iv``.
        """
        iv = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        return EncryptedPayload(
            value=base64.b64encode(sealed).decode("ascii"),
            iv=base64.b64encode(iv).decode("ascii"),
        )

    def decrypt(self, payload: Union[EncryptedPayload, Mapping]) -> str:
        """Decrypt and authenticate a payload produced by :meth:`encrypt`.

        Args:
            payload: EncryptedPayload, or a mapping with ``value`` and ``iv``.

        Returns:
            The original plaintext.

        Raises:
            DecryptionError: For any malformed, truncated, tampered or
                wrongly keyed payload.
        """
        if isinstance(payload, EncryptedPayload):
            value, iv_text = payload.value, payload.iv
        elif isinstance(payload, Mapping):
            value, iv_text = payload.get("value"), payload.get("iv")
        else:
            raise DecryptionError()
        sealed = _b64decode(value)
        iv = _b64decode(iv_text)
        # AESGCM expects ciphertext with the tag on its tail
        if len(iv) != NONCE_SIZE or len(sealed) < TAG_SIZE:
            raise DecryptionError()
        try:
            plaintext = self._aead.decrypt(iv, sealed, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError):
            raise DecryptionError() from None
