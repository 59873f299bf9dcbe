"""Exceptions raised by the secrets subsystem.

Security Note:
    Exception messages never carry key material, plaintext or ciphertext.
"""


class SecretsError(Exception):
    """Base exception for secret bootstrapping and credential protection."""


class CipherConfigurationError(SecretsError, ValueError):
    """Key material supplied to the cipher is malformed or has the wrong length."""


class DecryptionError(SecretsError):
    """A protected value could not be decrypted.

    Raised for tampered, truncated, badly encoded or wrongly keyed payloads
    alike; the cause is deliberately not distinguishable by the caller.
    """

    def __init__(self, message: str = "Unable to decrypt protected value"):
        super().__init__(message)


class SecretsPersistenceError(SecretsError, RuntimeError):
    """The secrets file could not be created, written or read back."""


class ProtectedFieldIntegrityError(SecretsError, ValueError):
    """A protected field row carries only one half of its (value, iv) pair."""
