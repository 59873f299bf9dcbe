"""Arr Secrets.

Root secret bootstrapping and at-rest credential protection for the Arr
dashboard.
"""
from .version import __version__
from .exceptions import (
    SecretsError,
    CipherConfigurationError,
    DecryptionError,
    SecretsPersistenceError,
    ProtectedFieldIntegrityError,
)
from .startup import SecretsContext, setup_secrets, get_secrets_context

__all__ = [
    "__version__",
    "SecretsError",
    "CipherConfigurationError",
    "DecryptionError",
    "SecretsPersistenceError",
    "ProtectedFieldIntegrityError",
    "SecretsContext",
    "setup_secrets",
    "get_secrets_context",
]
