"""
Password Hashing - Argon2id hashing and verification of user passwords.

Hashes are self-describing PHC strings (``$argon2id$v=19$m=...,t=...,p=1$...``)
that embed their parameters and salt. ``PasswordHasher`` selects the strategy
that verifies a stored hash from its prefix, so the hashing algorithm can be
changed without changing the ``hash``/``verify`` contract.

Security Note:
    Never log passwords or stored hashes.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import argon2
from argon2 import Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

logger = logging.getLogger("arr.secrets")

ARGON2_MEMORY_COST = 65536  # KiB, 64 MiB
ARGON2_TIME_COST = 3
ARGON2_PARALLELISM = 1
ARGON2_HASH_LEN = 32
ARGON2_SALT_LEN = 16


class PasswordHashStrategy(ABC):
    """One password hashing algorithm with a fixed parameter set."""

    #: prefix identifying hashes produced by this strategy
    prefix: str = ""

    def handles(self, stored_hash: str) -> bool:
        return stored_hash.startswith(self.prefix)

    @abstractmethod
    def hash(self, password: str) -> str:
        """Hash ``password`` under a fresh random salt."""

    @abstractmethod
    def verify(self, candidate: str, stored_hash: str) -> bool:
        """Return True if ``candidate`` matches ``stored_hash``."""

    @abstractmethod
    def needs_rehash(self, stored_hash: str) -> bool:
        """Return True if ``stored_hash`` uses outdated parameters."""


class Argon2idStrategy(PasswordHashStrategy):
    """Argon2id via argon2-cffi."""

    prefix = "$argon2id$"

    def __init__(
        self,
        memory_cost: int = ARGON2_MEMORY_COST,
        time_cost: int = ARGON2_TIME_COST,
        parallelism: int = ARGON2_PARALLELISM,
    ):
        self._hasher = argon2.PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=ARGON2_HASH_LEN,
            salt_len=ARGON2_SALT_LEN,
            type=Type.ID,
        )

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, candidate: str, stored_hash: str) -> bool:
        try:
            return self._hasher.verify(stored_hash, candidate)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError, ValueError):
            logger.debug("Rejected malformed argon2 hash")
            return False

    def needs_rehash(self, stored_hash: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(stored_hash)
        except (InvalidHashError, ValueError):
            return True


class PasswordHasher:
    """Hash and verify user passwords.

    The first strategy produces new hashes; every strategy may verify hashes
    carrying its prefix. Instances are immutable after construction.

    Args:
        strategies: Strategies in order of preference. Defaults to a single
            :class:`Argon2idStrategy` with the standard parameters.
    """

    def __init__(self, strategies: Optional[Sequence[PasswordHashStrategy]] = None):
        self._strategies = tuple(strategies or (Argon2idStrategy(),))

    @property
    def default(self) -> PasswordHashStrategy:
        return self._strategies[0]

    def _strategy_for(self, stored_hash: str) -> Optional[PasswordHashStrategy]:
        for strategy in self._strategies:
            if strategy.handles(stored_hash):
                return strategy
        return None

    def hash(self, password: str) -> str:
        """Return a salted, self-describing hash of ``password``."""
        if not isinstance(password, str):
            raise TypeError("password must be a string")
        return self.default.hash(password)

    def verify(self, candidate: str, stored_hash: str) -> bool:
        """Check a login attempt against a stored hash.

        Malformed, legacy or unknown hashes are reported as a failed
        verification, never as an exception.
        """
        if not isinstance(candidate, str) or not isinstance(stored_hash, str):
            return False
        strategy = self._strategy_for(stored_hash)
        if strategy is None:
            logger.debug("No password strategy for stored hash format")
            return False
        return strategy.verify(candidate, stored_hash)

    def needs_rehash(self, stored_hash: str) -> bool:
        """Return True if ``stored_hash`` should be replaced on next login."""
        strategy = self._strategy_for(stored_hash)
        if strategy is not self.default:
            return True
        return strategy.needs_rehash(stored_hash)
