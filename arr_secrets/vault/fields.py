"""
Protected fields - mapping one secret onto an (encrypted value, IV) column pair.

A protected field ``api_key`` is stored as ``encrypted_api_key`` and
``api_key_iv``. Both columns are written together and are required together
on read; a row carrying only one of them is corrupt.
"""
from collections.abc import Mapping
from typing import Optional

from ..exceptions import ProtectedFieldIntegrityError
from .crypto import AuthenticatedCipher, EncryptedPayload


class ProtectedField:
    """Column naming and (de)serialization for one encrypted field.

    Args:
        name: Logical field name, e.g. ``"api_key"``.
        value_column: Override for the ciphertext column name.
        iv_column: Override for the IV column name.
    """

    def __init__(
        self,
        name: str,
        value_column: Optional[str] = None,
        iv_column: Optional[str] = None,
    ):
        self.name = name
        self.value_column = value_column or f"encrypted_{name}"
        self.iv_column = iv_column or f"{name}_iv"

    def __repr__(self) -> str:
        return f"<ProtectedField {self.name} ({self.value_column}, {self.iv_column})>"

    def protect(self, cipher: AuthenticatedCipher, plaintext: str) -> dict[str, str]:
        """Encrypt ``plaintext`` and return the column values to persist."""
        payload = cipher.encrypt(plaintext)
        return {self.value_column: payload.value, self.iv_column: payload.iv}

    def payload(self, row: Mapping) -> Optional[EncryptedPayload]:
        """Extract the stored payload from a row.

        Returns:
            EncryptedPayload, or None when the field has never been set.

        Raises:
            ProtectedFieldIntegrityError: If only one of the two columns is set.
        """
        value = row.get(self.value_column)
        iv = row.get(self.iv_column)
        if not value and not iv:
            return None
        if not value or not iv:
            raise ProtectedFieldIntegrityError(
                f"Protected field {self.name!r} has "
                f"{self.value_column if value else self.iv_column} "
                f"without {self.iv_column if value else self.value_column}"
            )
        return EncryptedPayload(value=value, iv=iv)

    def reveal(self, cipher: AuthenticatedCipher, row: Mapping) -> Optional[str]:
        """Decrypt the field from a row, or return None if it is unset.

        Raises:
            ProtectedFieldIntegrityError: If the column pair is incomplete.
            DecryptionError: If the stored payload fails authentication.
        """
        payload = self.payload(row)
        if payload is None:
            return None
        return cipher.decrypt(payload)
