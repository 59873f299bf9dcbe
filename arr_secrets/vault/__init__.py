"""Secrets vault - Root secrets, field encryption and password hashing.

Security Note (Threat Model):
    The root encryption key lives in ``secrets.json`` (mode 0600) beside the
    database and in process memory for the process lifetime. Anyone able to
    read that file can decrypt every protected field; losing it makes every
    protected field unrecoverable. Backups carry the file contents and are
    therefore password-encrypted.
"""

from .store import RootSecrets, SecretStore
from .crypto import AuthenticatedCipher, EncryptedPayload, safe_compare
from .passwords import PasswordHasher, PasswordHashStrategy, Argon2idStrategy
from .fields import ProtectedField
from .config import SecretsConfig, resolve_secrets_path, generate_secret_hex

__all__ = [
    "RootSecrets",
    "SecretStore",
    "AuthenticatedCipher",
    "EncryptedPayload",
    "safe_compare",
    "PasswordHasher",
    "PasswordHashStrategy",
    "Argon2idStrategy",
    "ProtectedField",
    "SecretsConfig",
    "resolve_secrets_path",
    "generate_secret_hex",
]
