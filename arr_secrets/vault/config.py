"""
Secrets Configuration - Path resolution and validated settings.

Reads settings from environment variables:
    SECRETS_PATH = <explicit path to secrets.json>
    DATABASE_URL = file:<path to sqlite database> | <any other database url>
    ARR_SECRETS_DIR = <fallback directory when the database is not a local file>

When the database is a local file the secrets record lives next to it;
otherwise the fixed default directory is used.

Security Note:
    Never log key material. Only log paths and field names.
"""
import os
import base64
import secrets
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("arr.secrets")

SECRETS_FILENAME = "secrets.json"
DEFAULT_SECRETS_DIR = Path("~/.config/arr-dashboard")
SECRET_BYTES = 32

_FILE_URL_PREFIX = "file:"


def sqlite_path_from_url(database_url: Optional[str]) -> Optional[Path]:
    """Return the database file path for a ``file:`` database URL.

    Args:
        database_url: Database connection URL, e.g. ``file:./data/prod.db``.

    Returns:
        Absolute path of the database file, or None when the URL does not
        point to a local file.
    """
    if not database_url or not database_url.startswith(_FILE_URL_PREFIX):
        return None
    raw = database_url[len(_FILE_URL_PREFIX):]
    # drop connection parameters, e.g. file:./dev.db?connection_limit=1
    raw = raw.split("?", 1)[0]
    if raw.startswith("//"):
        raw = raw[2:]
    if not raw:
        return None
    return Path(raw).expanduser().resolve()


def resolve_secrets_path(
    secrets_path: Optional[os.PathLike] = None,
    database_url: Optional[str] = None,
    default_dir: Optional[os.PathLike] = None,
) -> Path:
    """Decide where the secrets record is stored.

    Precedence:
        1. An explicit ``secrets_path``.
        2. ``secrets.json`` beside a local ``file:`` database.
        3. ``secrets.json`` in ``default_dir`` (``~/.config/arr-dashboard``).

    Returns:
        Absolute path to the secrets file.
    """
    if secrets_path:
        path = Path(secrets_path).expanduser().resolve()
        logger.debug("Using explicit secrets path %s", path)
        return path
    db_file = sqlite_path_from_url(database_url)
    if db_file is not None:
        path = db_file.parent / SECRETS_FILENAME
        logger.debug("Colocating secrets with database at %s", path)
        return path
    directory = Path(default_dir or DEFAULT_SECRETS_DIR).expanduser().resolve()
    path = directory / SECRETS_FILENAME
    logger.debug("Using default secrets location %s", path)
    return path


def generate_secret_hex() -> str:
    """Generate a random 32-byte secret and return it as 64 hex characters.

    This is a utility for operators who prefer to provision secrets by hand.
    """
    return secrets.token_hex(SECRET_BYTES)


def generate_encryption_key() -> str:
    """Generate a random 32-byte cipher key and return as base64 string."""
    return base64.b64encode(secrets.token_bytes(SECRET_BYTES)).decode("ascii")


class SecretsConfig(BaseModel):
    """Validated secrets configuration."""

    secrets_path: Optional[Path] = None
    database_url: Optional[str] = None
    default_dir: Path = Field(default=DEFAULT_SECRETS_DIR)
    password_memory_cost: int = Field(default=65536, ge=8192, le=1048576)
    password_time_cost: int = Field(default=3, ge=2)
    backup_kdf_iterations: int = Field(default=100_000, ge=10_000, le=10_000_000)

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: Optional[str]) -> Optional[str]:
        """Treat a blank database url as unset."""
        if v is not None and not v.strip():
            return None
        return v

    @property
    def resolved_secrets_path(self) -> Path:
        """Secrets file location after applying the colocation policy."""
        return resolve_secrets_path(
            self.secrets_path, self.database_url, self.default_dir,
        )

    @classmethod
    def from_env(cls) -> "SecretsConfig":
        """Create SecretsConfig by loading values from environment.

        Returns:
            Populated SecretsConfig instance.
        """
        values: dict = {
            "secrets_path": os.environ.get("SECRETS_PATH") or None,
            "database_url": os.environ.get("DATABASE_URL"),
        }
        default_dir = os.environ.get("ARR_SECRETS_DIR")
        if default_dir:
            values["default_dir"] = default_dir
        memory_cost = os.environ.get("ARR_PASSWORD_MEMORY_COST")
        if memory_cost:
            values["password_memory_cost"] = int(memory_cost)
        time_cost = os.environ.get("ARR_PASSWORD_TIME_COST")
        if time_cost:
            values["password_time_cost"] = int(time_cost)
        iterations = os.environ.get("ARR_BACKUP_KDF_ITERATIONS")
        if iterations:
            values["backup_kdf_iterations"] = int(iterations)
        return cls(**values)
