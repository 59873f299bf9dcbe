"""
Backup Crypto - Password-based encryption of exported backups.

An exported backup (database rows plus the ``secrets`` block) is sealed in an
envelope:

    PBKDF2-HMAC-SHA256(password, salt 32B, iterations) → 32-byte key
    AES-256-GCM(key, iv 12B) → cipherText + tag 16B

    {"version": "1", "salt": b64, "iv": b64, "tag": b64, "cipherText": b64,
     "kdfParams": {"algorithm": "PBKDF2", "hash": "SHA-256",
                   "iterations": N, "saltLength": 32}}

Security Note:
    Never log the backup password or decrypted backup contents.
"""
import os
import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..exceptions import DecryptionError
from .crypto import KEY_LENGTH, NONCE_SIZE, TAG_SIZE

logger = logging.getLogger("arr.secrets")

ENVELOPE_VERSION = "1"
BACKUP_VERSION = "1.0"  # plaintext backup document format
KDF_ALGORITHM = "PBKDF2"
KDF_HASH = "SHA-256"
KDF_ITERATIONS = 100_000
MAX_KDF_ITERATIONS = 10_000_000  # envelopes come from untrusted files
SALT_LENGTH = 32


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(data: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError, TypeError):
        raise DecryptionError("Unable to decrypt backup") from None


def derive_backup_key(password: str, salt: bytes, iterations: int) -> bytes:
    """Derive the 32-byte backup key with PBKDF2-HMAC-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


@dataclass(frozen=True)
class BackupEnvelope:
    """Encrypted backup file contents."""

    salt: str
    iv: str
    tag: str
    cipherText: str
    kdfParams: dict[str, Any] = field(default_factory=dict)
    version: str = ENVELOPE_VERSION

    def as_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "salt": self.salt,
            "iv": self.iv,
            "tag": self.tag,
            "cipherText": self.cipherText,
            "kdfParams": dict(self.kdfParams),
        }

    def to_json(self) -> bytes:
        return orjson.dumps(self.as_dict(), option=orjson.OPT_INDENT_2)

    @classmethod
    def from_json(cls, data: bytes) -> "BackupEnvelope":
        """Parse an envelope, raising DecryptionError if it is not one."""
        try:
            obj = orjson.loads(data)
        except orjson.JSONDecodeError:
            raise DecryptionError("Backup file is not valid JSON") from None
        if not is_encrypted_backup_envelope(obj):
            raise DecryptionError("Backup file is not an encrypted envelope")
        return cls(
            salt=obj["salt"],
            iv=obj["iv"],
            tag=obj["tag"],
            cipherText=obj["cipherText"],
            kdfParams=obj["kdfParams"],
            version=obj["version"],
        )


def is_encrypted_backup_envelope(obj: Any) -> bool:
    """Strictly check that ``obj`` has the shape of a backup envelope."""
    if not isinstance(obj, dict):
        return False
    kdf = obj.get("kdfParams")
    return (
        isinstance(obj.get("version"), str)
        and isinstance(obj.get("salt"), str)
        and isinstance(obj.get("iv"), str)
        and isinstance(obj.get("tag"), str)
        and isinstance(obj.get("cipherText"), str)
        and isinstance(kdf, dict)
        and isinstance(kdf.get("algorithm"), str)
        and isinstance(kdf.get("hash"), str)
        and isinstance(kdf.get("iterations"), int)
        and not isinstance(kdf.get("iterations"), bool)
        and isinstance(kdf.get("saltLength"), int)
        and not isinstance(kdf.get("saltLength"), bool)
    )


def is_plaintext_backup(obj: Any) -> bool:
    """Detect a legacy, unencrypted backup document."""
    if not isinstance(obj, dict):
        return False
    return (
        isinstance(obj.get("version"), str)
        and isinstance(obj.get("appVersion"), str)
        and isinstance(obj.get("timestamp"), str)
        and isinstance(obj.get("data"), dict)
        and isinstance(obj.get("secrets"), dict)
        and "cipherText" not in obj
    )


def encrypt_backup_data(
    data: bytes, password: str, iterations: int = KDF_ITERATIONS,
) -> BackupEnvelope:
    """Encrypt backup bytes under a password.

    Args:
        data: Serialized backup document.
        password: Backup password (see ``SecretStore.get_or_create_backup_password``).
        iterations: PBKDF2 iteration count recorded in the envelope.

    Returns:
        BackupEnvelope ready to be written with :meth:`BackupEnvelope.to_json`.
    """
    if not password:
        raise ValueError("Backup password must not be empty")
    if not 1 <= iterations <= MAX_KDF_ITERATIONS:
        raise ValueError(
            f"iterations must be between 1 and {MAX_KDF_ITERATIONS}"
        )
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(NONCE_SIZE)
    key = derive_backup_key(password, salt, iterations)
    sealed = AESGCM(key).encrypt(iv, data, None)
    return BackupEnvelope(
        salt=_b64(salt),
        iv=_b64(iv),
        tag=_b64(sealed[-TAG_SIZE:]),
        cipherText=_b64(sealed[:-TAG_SIZE]),
        kdfParams={
            "algorithm": KDF_ALGORITHM,
            "hash": KDF_HASH,
            "iterations": iterations,
            "saltLength": SALT_LENGTH,
        },
    )


def decrypt_backup_data(envelope: BackupEnvelope, password: str) -> bytes:
    """Decrypt a backup envelope.

    Raises:
        DecryptionError: On a wrong password, tampering, or an envelope this
            version cannot read.
    """
    kdf = envelope.kdfParams
    if (
        envelope.version != ENVELOPE_VERSION
        or kdf.get("algorithm") != KDF_ALGORITHM
        or kdf.get("hash") != KDF_HASH
    ):
        raise DecryptionError("Unsupported backup envelope")
    iterations = kdf.get("iterations")
    if (
        not isinstance(iterations, int)
        or isinstance(iterations, bool)
        or not 1 <= iterations <= MAX_KDF_ITERATIONS
        or kdf.get("saltLength") != SALT_LENGTH
    ):
        raise DecryptionError("Unsupported backup envelope")
    salt = _unb64(envelope.salt)
    iv = _unb64(envelope.iv)
    tag = _unb64(envelope.tag)
    ciphertext = _unb64(envelope.cipherText)
    if (
        len(salt) != SALT_LENGTH
        or len(iv) != NONCE_SIZE
        or len(tag) != TAG_SIZE
    ):
        raise DecryptionError("Unable to decrypt backup")
    key = derive_backup_key(password, salt, iterations)
    try:
        return AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag:
        logger.warning("Backup decryption failed authentication")
        raise DecryptionError("Unable to decrypt backup") from None
