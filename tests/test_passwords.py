"""
Tests for PasswordHasher and hashing strategies.

Most tests use a low-cost Argon2id strategy to keep the suite fast; the
default parameters are exercised separately.
"""
import pytest

from arr_secrets.vault.passwords import (
    Argon2idStrategy,
    PasswordHasher,
    PasswordHashStrategy,
)


class PlainStrategy(PasswordHashStrategy):
    """Reversible test-only strategy used to exercise strategy selection."""

    prefix = "$plain$"

    def hash(self, password):
        return f"{self.prefix}{password}"

    def verify(self, candidate, stored_hash):
        return stored_hash == f"{self.prefix}{candidate}"

    def needs_rehash(self, stored_hash):
        return False


# --- Test Fixtures ---

@pytest.fixture(scope="module")
def fast_strategy():
    return Argon2idStrategy(memory_cost=1024, time_cost=2)


@pytest.fixture(scope="module")
def hasher(fast_strategy):
    """Hasher with reduced Argon2 cost."""
    return PasswordHasher([fast_strategy])


# --- Test Hashing ---

class TestHashing:
    """Tests for hash()."""

    def test_default_parameters(self):
        """Test the default hasher uses Argon2id with the standard cost."""
        stored = PasswordHasher().hash("correct horse battery staple")
        assert stored.startswith("$argon2id$v=19$")
        assert "m=65536,t=3,p=1" in stored

    def test_hash_is_not_plaintext(self, hasher):
        """Test the stored hash does not contain the password."""
        stored = hasher.hash("hunter2-password")
        assert "hunter2-password" not in stored

    def test_same_password_different_hashes(self, hasher):
        """Test fresh salts make repeated hashes differ."""
        assert hasher.hash("repeat-me") != hasher.hash("repeat-me")

    def test_non_string_rejected(self, hasher):
        """Test hashing a non-string raises TypeError."""
        with pytest.raises(TypeError):
            hasher.hash(None)


# --- Test Verification ---

class TestVerification:
    """Tests for verify()."""

    @pytest.mark.parametrize("password", ["p", "correct horse", "пароль-密码", "x" * 512, ""])
    def test_verify_own_hash(self, hasher, password):
        """Test verify(p, hash(p)) is True."""
        assert hasher.verify(password, hasher.hash(password)) is True

    def test_wrong_password(self, hasher):
        """Test verify with a wrong password is False."""
        stored = hasher.hash("right-password")
        assert hasher.verify("wrong-password", stored) is False

    def test_default_hasher_roundtrip(self):
        """Test verification with the default parameters."""
        hasher = PasswordHasher()
        stored = hasher.hash("s3cret!")
        assert hasher.verify("s3cret!", stored) is True
        assert hasher.verify("s3cret?", stored) is False

    def test_verifies_hash_with_other_parameters(self, hasher):
        """Test parameters embedded in the hash are used for verification."""
        stored = PasswordHasher().hash("portable")
        assert hasher.verify("portable", stored) is True

    @pytest.mark.parametrize("stored", [
        "",
        "not-a-hash",
        "$argon2id$garbage",
        "$argon2id$v=19$m=1024,t=2,p=1$!!!!$????",
        "$2b$12$R9h/cIPz0gi.URNNX3kh2OPST9/PgBkqquzi.Ss7KIUgO2t0jWMUW",
        "$argon2id$v=19$m=1024,t=2,p=1$ü$ü",
    ])
    def test_malformed_hash_is_false(self, hasher, stored):
        """Test malformed or legacy hashes verify False without raising."""
        assert hasher.verify("anything", stored) is False

    def test_non_string_inputs_are_false(self, hasher):
        """Test None or bytes inputs verify False."""
        stored = hasher.hash("pw")
        assert hasher.verify(None, stored) is False
        assert hasher.verify("pw", None) is False
        assert hasher.verify("pw", stored.encode()) is False

    def test_truncated_hash_is_false(self, hasher):
        """Test a truncated stored hash verifies False."""
        stored = hasher.hash("pw")
        assert hasher.verify("pw", stored[:-10]) is False


# --- Test Strategy Selection ---

class TestStrategies:
    """Tests for prefix-based strategy selection."""

    def test_first_strategy_hashes(self, fast_strategy):
        """Test new hashes come from the first strategy."""
        hasher = PasswordHasher([fast_strategy, PlainStrategy()])
        assert hasher.hash("pw").startswith("$argon2id$")

    def test_secondary_strategy_verifies(self, fast_strategy):
        """Test hashes of a secondary strategy are still verified."""
        hasher = PasswordHasher([fast_strategy, PlainStrategy()])
        assert hasher.verify("legacy", "$plain$legacy") is True
        assert hasher.verify("other", "$plain$legacy") is False

    def test_unknown_prefix_is_false(self, hasher):
        """Test a hash no strategy handles verifies False."""
        assert hasher.verify("legacy", "$plain$legacy") is False

    def test_needs_rehash_for_secondary(self, fast_strategy):
        """Test hashes of a non-default strategy need rehashing."""
        hasher = PasswordHasher([fast_strategy, PlainStrategy()])
        assert hasher.needs_rehash("$plain$legacy") is True
        assert hasher.needs_rehash(hasher.hash("pw")) is False

    def test_needs_rehash_for_outdated_parameters(self, hasher):
        """Test a hash with different Argon2 cost needs rehashing."""
        stored = hasher.hash("pw")
        assert PasswordHasher().needs_rehash(stored) is True

    def test_needs_rehash_for_unknown_format(self, hasher):
        """Test an unrecognized format needs rehashing."""
        assert hasher.needs_rehash("not-a-hash") is True
