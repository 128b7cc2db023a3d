"""Fernet encryption for free-text clinical fields at rest.

Notes typed by staff (application notes, consultation notes, adjustment
reasons) may carry identifying detail, so they are encrypted before being
written to SQLite. Numeric and date columns stay in clear text because the
metrics engine and list filters read them.
"""

from __future__ import annotations

import logging

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when a key is unusable or a token cannot be decrypted."""


class FieldEncryptor:
    """Encrypts and decrypts optional text values.

    Usage::

        encryptor = FieldEncryptor(FieldEncryptor.generate_key())
        token = encryptor.encrypt("Patient reported nausea")
        encryptor.decrypt(token)  # "Patient reported nausea"
    """

    def __init__(self, key: str) -> None:
        """
        Raises:
            EncryptionError: If the key is empty or not a valid Fernet key.
        """
        if not key or not key.strip():
            raise EncryptionError("Encryption key must not be empty")
        try:
            self._fernet = Fernet(key.strip().encode("utf-8"))
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Invalid encryption key: {exc}") from exc

    def encrypt(self, text: str | None) -> str | None:
        """Encrypt ``text``; ``None`` and empty strings are stored as NULL."""
        if not text:
            return None
        return self._fernet.encrypt(text.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str | None) -> str | None:
        if not token:
            return None
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")
