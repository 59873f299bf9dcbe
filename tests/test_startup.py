"""
Tests for SecretsContext composition and the aiohttp startup hook.
"""
import pytest
from aiohttp import web
from aiohttp.test_utils import make_mocked_request

from arr_secrets import (
    SecretsContext,
    SecretsPersistenceError,
    get_secrets_context,
    setup_secrets,
)
from arr_secrets.startup import SECRETS_CONTEXT
from arr_secrets.vault.config import SecretsConfig
from arr_secrets.vault.crypto import AuthenticatedCipher


@pytest.fixture
def config(tmp_path):
    """Config colocating secrets with a local database, with cheap hashing."""
    return SecretsConfig(
        database_url=f"file:{tmp_path}/data/arr.db",
        password_memory_cost=8192,
        password_time_cost=2,
        backup_kdf_iterations=10_000,
    )


async def _start(app):
    app.on_startup.freeze()
    await app.startup()


class TestSecretsContext:
    """Tests for SecretsContext.from_config."""

    def test_builds_services(self, config, tmp_path):
        """Test the context bootstraps secrets and wires the cipher."""
        context = SecretsContext.from_config(config)
        assert context.secrets_path == (tmp_path / "data" / "secrets.json").resolve()
        assert context.secrets_path.exists()
        payload = context.cipher.encrypt("radarr-key")
        standalone = AuthenticatedCipher(context.secrets.encryption_key)
        assert standalone.decrypt(payload) == "radarr-key"

    def test_session_secret(self, config):
        """Test the session secret is 32 bytes and distinct from the key."""
        context = SecretsContext.from_config(config)
        assert len(context.session_secret) == 32
        assert context.session_secret != context.secrets.encryption_key_bytes

    def test_hasher_uses_configured_cost(self, config):
        """Test hashing parameters come from the configuration."""
        context = SecretsContext.from_config(config)
        stored = context.hasher.hash("pw")
        assert "m=8192,t=2,p=1" in stored
        assert context.hasher.verify("pw", stored) is True

    def test_restart_keeps_key(self, config):
        """Test a second bootstrap decrypts values from the first."""
        first = SecretsContext.from_config(config)
        payload = first.cipher.encrypt("persisted")
        second = SecretsContext.from_config(config)
        assert second.cipher.decrypt(payload) == "persisted"

    def test_store_accessor(self, config):
        """Test the context exposes the store for backup export."""
        context = SecretsContext.from_config(config)
        assert context.store.read_secrets() == context.secrets

    def test_backup_uses_configured_iterations(self, config):
        """Test backups are sealed with the configured KDF iteration count."""
        context = SecretsContext.from_config(config)
        envelope = context.encrypt_backup(b'{"data": {}}')
        assert envelope.kdfParams["iterations"] == 10_000
        assert context.decrypt_backup(envelope) == b'{"data": {}}'

    def test_backup_password_persisted(self, config):
        """Test a backup sealed by one context opens in the next."""
        envelope = SecretsContext.from_config(config).encrypt_backup(b"{}")
        assert SecretsContext.from_config(config).decrypt_backup(envelope) == b"{}"

    def test_context_is_frozen(self, config):
        """Test the context cannot be rebound after startup."""
        context = SecretsContext.from_config(config)
        with pytest.raises(AttributeError):
            context.cipher = None


class TestAiohttpSetup:
    """Tests for setup_secrets and get_secrets_context."""

    @pytest.mark.asyncio
    async def test_startup_populates_app(self, config):
        """Test the startup hook stores the context on the app."""
        app = web.Application()
        setup_secrets(app, config)
        await _start(app)
        context = app[SECRETS_CONTEXT]
        assert isinstance(context, SecretsContext)
        request = make_mocked_request("GET", "/", app=app)
        assert get_secrets_context(request) is context

    @pytest.mark.asyncio
    async def test_startup_failure_is_fatal(self, tmp_path):
        """Test an unwritable secrets location aborts startup."""
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        app = web.Application()
        setup_secrets(app, SecretsConfig(secrets_path=blocker / "secrets.json"))
        with pytest.raises(SecretsPersistenceError):
            await _start(app)

    def test_context_missing(self):
        """Test reading the context before setup raises."""
        request = make_mocked_request("GET", "/", app=web.Application())
        with pytest.raises(RuntimeError):
            get_secrets_context(request)
