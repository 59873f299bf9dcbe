"""
Tests for ProtectedField column mapping.
"""
import pytest

from arr_secrets.exceptions import DecryptionError, ProtectedFieldIntegrityError
from arr_secrets.vault.crypto import AuthenticatedCipher
from arr_secrets.vault.fields import ProtectedField


@pytest.fixture
def cipher():
    return AuthenticatedCipher(b"\x11" * 32)


@pytest.fixture
def api_key():
    return ProtectedField("api_key")


class TestProtectedField:
    """Tests for protect/reveal."""

    def test_default_column_names(self, api_key):
        """Test column names derive from the field name."""
        assert api_key.value_column == "encrypted_api_key"
        assert api_key.iv_column == "api_key_iv"

    def test_custom_column_names(self):
        """Test column names can be overridden."""
        field = ProtectedField("api_key", "encryptedApiKey", "encryptionIv")
        assert field.value_column == "encryptedApiKey"
        assert field.iv_column == "encryptionIv"

    def test_protect_writes_both_columns(self, api_key, cipher):
        """Test protect returns exactly the two column values."""
        row = api_key.protect(cipher, "sonarr-api-key")
        assert set(row) == {"encrypted_api_key", "api_key_iv"}
        assert "sonarr-api-key" not in row.values()

    def test_reveal_roundtrip(self, api_key, cipher):
        """Test a protected row reveals the original value."""
        row = {"id": 7, **api_key.protect(cipher, "sonarr-api-key")}
        assert api_key.reveal(cipher, row) == "sonarr-api-key"

    def test_unset_field(self, api_key, cipher):
        """Test a row without the field reveals None."""
        assert api_key.reveal(cipher, {"id": 1}) is None
        assert api_key.reveal(cipher, {"encrypted_api_key": None, "api_key_iv": None}) is None

    def test_value_without_iv(self, api_key, cipher):
        """Test a row with only the ciphertext is an integrity error."""
        row = api_key.protect(cipher, "x")
        del row["api_key_iv"]
        with pytest.raises(ProtectedFieldIntegrityError):
            api_key.reveal(cipher, row)

    def test_iv_without_value(self, api_key, cipher):
        """Test a row with only the IV is an integrity error."""
        row = api_key.protect(cipher, "x")
        row["encrypted_api_key"] = ""
        with pytest.raises(ProtectedFieldIntegrityError):
            api_key.reveal(cipher, row)

    def test_wrong_key(self, api_key, cipher):
        """Test a row encrypted under another key fails to decrypt."""
        row = api_key.protect(cipher, "x")
        with pytest.raises(DecryptionError):
            api_key.reveal(AuthenticatedCipher(b"\x22" * 32), row)
