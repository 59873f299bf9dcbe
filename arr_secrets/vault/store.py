"""
Secret Store - Root secret bootstrapping for the dashboard process.

Owns ``secrets.json``, the record holding the root encryption key and the
session cookie secret:

    {"encryptionKey": "<64 hex>", "sessionCookieSecret": "<64 hex>"}

The file is written once, on first start, and re-validated on every later
start. A record that cannot be parsed or fails validation is replaced
wholesale; every value encrypted under the discarded key becomes unreadable.

Concurrency:
    Records are discarded and published only while holding an exclusive
    ``flock`` on the containing directory. New records are staged in a
    private temporary file and published with ``os.link`` (or a locked
    ``os.replace`` where hard links are unavailable), so readers never
    observe a partially written file. A process that loses the race
    re-reads the winner's record instead of generating its own.

Security Note:
    Never log key material. Only log paths, field names and lengths.
"""
import os
import re
import time
import fcntl
import base64
import binascii
import secrets
import logging
import tempfile
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Any, Iterator, Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..exceptions import SecretsPersistenceError
from .config import SECRET_BYTES

logger = logging.getLogger("arr.secrets")

FILE_MODE = 0o600
DIR_MODE = 0o700
BACKUP_PASSWORD_FIELD = "backupPassword"

_ROOT_FIELDS = ("encryptionKey", "sessionCookieSecret")
_MAX_ATTEMPTS = 5
_SETTLE_DELAYS = (0.05, 0.1, 0.2)
_BACKUP_PASSWORD_PATTERN = re.compile(r'"backupPassword"\s*:\s*"([^"]+)"')


def decode_secret(value: str) -> bytes:
    """Decode a stored secret (64 hex chars, or base64) into raw bytes.

    Raises:
        ValueError: If the value is neither valid hex nor valid base64.
    """
    if len(value) == SECRET_BYTES * 2:
        try:
            return bytes.fromhex(value)
        except ValueError:
            pass
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as err:
        raise ValueError("secret is neither hex nor base64 encoded") from err


class RootSecrets(BaseModel):
    """Root key material for the process.

    Both fields decode to exactly 32 bytes; anything else fails validation.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    encryption_key: str = Field(alias="encryptionKey")
    session_cookie_secret: str = Field(alias="sessionCookieSecret")

    @field_validator("encryption_key", "session_cookie_secret")
    @classmethod
    def validate_secret(cls, v: str) -> str:
        """Ensure the secret decodes to exactly 32 bytes."""
        raw = decode_secret(v)
        if len(raw) != SECRET_BYTES:
            raise ValueError(
                f"secret must decode to exactly {SECRET_BYTES} bytes, "
                f"got {len(raw)}"
            )
        return v

    @property
    def encryption_key_bytes(self) -> bytes:
        return decode_secret(self.encryption_key)

    @property
    def session_secret_bytes(self) -> bytes:
        return decode_secret(self.session_cookie_secret)

    @classmethod
    def generate(cls) -> "RootSecrets":
        """Create a record from two independent CSPRNG draws."""
        return cls(
            encryptionKey=secrets.token_hex(SECRET_BYTES),
            sessionCookieSecret=secrets.token_hex(SECRET_BYTES),
        )

    def to_record(self) -> dict[str, str]:
        """Return the on-disk representation (camelCase field names)."""
        return self.model_dump(by_alias=True)

    def __repr__(self) -> str:
        return "<RootSecrets encryptionKey=*** sessionCookieSecret=***>"

    __str__ = __repr__


def _parse_document(raw: bytes) -> Optional[dict[str, Any]]:
    try:
        document = orjson.loads(raw)
    except orjson.JSONDecodeError:
        return None
    if not isinstance(document, dict):
        return None
    return document


def _salvage_extras(raw: Optional[bytes]) -> dict[str, Any]:
    """Keep non-root fields (e.g. ``backupPassword``) from a discarded record."""
    if not raw:
        return {}
    document = _parse_document(raw)
    if document is not None:
        return {k: v for k, v in document.items() if k not in _ROOT_FIELDS}
    match = _BACKUP_PASSWORD_PATTERN.search(raw.decode("utf-8", errors="replace"))
    if match:
        logger.warning(
            "Recovered %s from unparseable secrets file", BACKUP_PASSWORD_FIELD,
        )
        return {BACKUP_PASSWORD_FIELD: match.group(1)}
    return {}


def _dump(document: dict[str, Any]) -> bytes:
    return orjson.dumps(document, option=orjson.OPT_INDENT_2) + b"\n"


class SecretStore:
    """File-backed owner of the process root secrets.

    Args:
        path: Location of ``secrets.json`` (see
            :func:`arr_secrets.vault.config.resolve_secrets_path`).
    """

    def __init__(self, path: os.PathLike):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    def _ensure_directory(self) -> None:
        try:
            self._path.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        except OSError as err:
            raise SecretsPersistenceError(
                f"Cannot create secrets directory {self._path.parent}: {err}"
            ) from err

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold an exclusive ``flock`` on the secrets directory.

        Every writer of the secrets file runs under this lock, so a record
        is only ever discarded or published by one process at a time.
        """
        try:
            fd = os.open(self._path.parent, os.O_RDONLY)
        except OSError as err:
            raise SecretsPersistenceError(
                f"Cannot open secrets directory {self._path.parent}: {err}"
            ) from err
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
        except OSError as err:
            os.close(fd)
            raise SecretsPersistenceError(
                f"Cannot lock secrets directory {self._path.parent}: {err}"
            ) from err
        try:
            yield
        finally:
            # closing the descriptor releases the lock
            os.close(fd)

    def _stage(self, document: dict[str, Any]) -> str:
        """Write ``document`` to a fresh 0600 temp file beside the target."""
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "wb") as fp:
                os.fchmod(fp.fileno(), FILE_MODE)
                fp.write(_dump(document))
                fp.flush()
                os.fsync(fp.fileno())
        except BaseException:
            os.unlink(tmp_name)
            raise
        return tmp_name

    def _publish_exclusive(self, document: dict[str, Any]) -> bool:
        """Create the secrets file only if it does not exist yet.

        Must be called with the directory lock held. The record is always
        fully written before it becomes visible under the final name.

        Returns:
            True if this call created the file, False if another writer
            got there first.
        """
        tmp_name = self._stage(document)
        try:
            try:
                os.link(tmp_name, self._path)
            except FileExistsError:
                return False
            except OSError:
                # no hard links here; the lock serializes the check and rename
                if os.path.lexists(self._path):
                    return False
                os.replace(tmp_name, self._path)
            return True
        finally:
            with suppress(FileNotFoundError):
                os.unlink(tmp_name)

    def _publish_replace(self, document: dict[str, Any]) -> None:
        """Atomically overwrite the secrets file with ``document``."""
        tmp_name = self._stage(document)
        try:
            os.replace(tmp_name, self._path)
        except BaseException:
            os.unlink(tmp_name)
            raise

    def _read_raw(self) -> tuple[Optional[bytes], bool]:
        """Return ``(content, exists)``; unreadable files have no content."""
        try:
            return self._path.read_bytes(), True
        except FileNotFoundError:
            return None, False
        except OSError as err:
            logger.warning(
                "Cannot read secrets file %s (%s)",
                self._path, err.__class__.__name__,
            )
            return None, True

    def _settle(
        self, raw: Optional[bytes], exists: bool
    ) -> tuple[Optional[bytes], bool]:
        """Re-read an empty or unparseable file a few times before giving up.

        A writer that does not take the directory lock may still be filling
        the file in.
        """
        for delay in _SETTLE_DELAYS:
            if raw is None or _parse_document(raw) is not None:
                break
            time.sleep(delay)
            raw, exists = self._read_raw()
        return raw, exists

    def _validate(
        self, raw: Optional[bytes], warn: bool = True
    ) -> Optional[RootSecrets]:
        if raw is None:
            return None
        document = _parse_document(raw)
        if document is None:
            if warn:
                logger.warning("Secrets file %s is not a JSON object", self._path)
            return None
        try:
            return RootSecrets.model_validate(document)
        except ValidationError as err:
            if warn:
                fields = sorted(
                    {str(e["loc"][0]) for e in err.errors() if e["loc"]}
                )
                logger.warning(
                    "Secrets file %s failed validation (fields: %s)",
                    self._path, ", ".join(fields) or "record",
                )
            return None

    def _read_document(self) -> dict[str, Any]:
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError as err:
            raise SecretsPersistenceError(
                f"Secrets file {self._path} does not exist"
            ) from err
        except OSError as err:
            raise SecretsPersistenceError(
                f"Cannot read secrets file {self._path}: {err}"
            ) from err
        document = _parse_document(raw)
        if document is None:
            raise SecretsPersistenceError(
                f"Secrets file {self._path} is not a JSON object"
            )
        return document

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_or_create(self) -> RootSecrets:
        """Load the root secrets, generating and persisting them if needed.

        This is NOT a pure read: on first run, or when the existing record is
        invalid, it creates the containing directory and writes a new
        ``secrets.json`` (mode 0600). Replacing an invalid record makes every
        value encrypted under the old key undecryptable.

        Returns:
            A RootSecrets value whose fields both decode to 32 bytes.

        Raises:
            SecretsPersistenceError: If the record cannot be persisted.
        """
        for _ in range(_MAX_ATTEMPTS):
            raw, _exists = self._read_raw()
            record = self._validate(raw, warn=False)
            if record is not None:
                logger.info("Loaded root secrets from %s", self._path)
                return record

            self._ensure_directory()
            with self._locked():
                raw, exists = self._settle(*self._read_raw())
                record = self._validate(raw)
                if record is not None:
                    logger.info("Loaded root secrets from %s", self._path)
                    return record

                extras = _salvage_extras(raw)
                if exists:
                    logger.warning(
                        "Discarding invalid secrets file %s; values encrypted "
                        "under the previous key can no longer be decrypted",
                        self._path,
                    )
                    try:
                        self._path.unlink(missing_ok=True)
                    except OSError as err:
                        raise SecretsPersistenceError(
                            f"Cannot replace secrets file {self._path}: {err}"
                        ) from err

                record = RootSecrets.generate()
                try:
                    created = self._publish_exclusive(
                        {**extras, **record.to_record()}
                    )
                except OSError as err:
                    raise SecretsPersistenceError(
                        f"Cannot write secrets file {self._path}: {err}"
                    ) from err
                if created:
                    logger.info("Generated new root secrets at %s", self._path)
                    return record
            logger.info(
                "Secrets file %s was created concurrently; re-reading",
                self._path,
            )
        raise SecretsPersistenceError(
            f"Unable to establish root secrets at {self._path} "
            f"after {_MAX_ATTEMPTS} attempts"
        )

    def read_secrets(self) -> RootSecrets:
        """Return the persisted root secrets without creating anything.

        Raises:
            SecretsPersistenceError: If the file is missing, unreadable or invalid.
        """
        document = self._read_document()
        try:
            return RootSecrets.model_validate(document)
        except ValidationError as err:
            raise SecretsPersistenceError(
                f"Secrets file {self._path} holds an invalid record"
            ) from err

    def get_or_create_backup_password(self) -> str:
        """Return the backup password stored beside the root secrets.

        A random password is generated and merged into ``secrets.json`` the
        first time it is needed. The file is re-read under the directory lock
        immediately before the write, so a password persisted by another
        process is kept.

        Raises:
            SecretsPersistenceError: If the secrets file cannot be updated.
        """
        self.get_or_create()
        password = self._read_document().get(BACKUP_PASSWORD_FIELD)
        if isinstance(password, str) and password:
            return password

        with self._locked():
            document = self._read_document()
            current = document.get(BACKUP_PASSWORD_FIELD)
            if isinstance(current, str) and current:
                return current
            candidate = secrets.token_urlsafe(SECRET_BYTES)
            document[BACKUP_PASSWORD_FIELD] = candidate
            try:
                self._publish_replace(document)
            except OSError as err:
                raise SecretsPersistenceError(
                    f"Cannot update secrets file {self._path}: {err}"
                ) from err
        logger.info("Stored new backup password in %s", self._path)
        return candidate
