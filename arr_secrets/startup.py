"""
Startup composition - the one place root secrets are loaded.

``SecretsContext.from_config`` runs the secret store once, builds the field
cipher from the root encryption key and pairs it with the password hasher.
The resulting context is handed explicitly to whatever needs it; with aiohttp
it is stored on the application by ``setup_secrets``.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from aiohttp import web

from .vault.backup import (
    KDF_ITERATIONS,
    BackupEnvelope,
    decrypt_backup_data,
    encrypt_backup_data,
)
from .vault.config import SecretsConfig
from .vault.crypto import AuthenticatedCipher
from .vault.passwords import Argon2idStrategy, PasswordHasher
from .vault.store import RootSecrets, SecretStore

logger = logging.getLogger("arr.secrets")


@dataclass(frozen=True)
class SecretsContext:
    """Process-wide secrets, built once at startup and read-only afterwards."""

    secrets: RootSecrets
    cipher: AuthenticatedCipher
    hasher: PasswordHasher
    secrets_path: Path
    backup_kdf_iterations: int = KDF_ITERATIONS

    @property
    def store(self) -> SecretStore:
        return SecretStore(self.secrets_path)

    @property
    def session_secret(self) -> bytes:
        return self.secrets.session_secret_bytes

    def encrypt_backup(self, data: bytes) -> BackupEnvelope:
        """Seal an exported backup under the stored backup password."""
        return encrypt_backup_data(
            data,
            self.store.get_or_create_backup_password(),
            iterations=self.backup_kdf_iterations,
        )

    def decrypt_backup(self, envelope: BackupEnvelope) -> bytes:
        return decrypt_backup_data(
            envelope, self.store.get_or_create_backup_password(),
        )

    @classmethod
    def from_config(cls, config: Optional[SecretsConfig] = None) -> "SecretsContext":
        """Bootstrap root secrets and build the services that depend on them.

        Raises:
            SecretsPersistenceError: If the secrets file cannot be established.
        """
        config = config or SecretsConfig.from_env()
        path = config.resolved_secrets_path
        secrets = SecretStore(path).get_or_create()
        hasher = PasswordHasher([
            Argon2idStrategy(
                memory_cost=config.password_memory_cost,
                time_cost=config.password_time_cost,
            )
        ])
        logger.info("Secrets context ready (secrets file: %s)", path)
        return cls(
            secrets=secrets,
            cipher=AuthenticatedCipher(secrets.encryption_key_bytes),
            hasher=hasher,
            secrets_path=path,
            backup_kdf_iterations=config.backup_kdf_iterations,
        )


SECRETS_CONTEXT = web.AppKey("arr_secrets_context", SecretsContext)


def setup_secrets(app: web.Application, config: Optional[SecretsConfig] = None) -> None:
    """Register secret bootstrapping on the application's startup signal.

    A persistence failure propagates out of the startup hook and aborts the
    application start.
    """
    async def _bootstrap(app: web.Application) -> None:
        app[SECRETS_CONTEXT] = SecretsContext.from_config(config)

    app.on_startup.append(_bootstrap)


def get_secrets_context(request: web.Request) -> SecretsContext:
    """Return the secrets context of the application serving ``request``."""
    try:
        return request.app[SECRETS_CONTEXT]
    except KeyError:
        raise RuntimeError(
            "Secrets context is not initialized; call setup_secrets(app)"
        ) from None
