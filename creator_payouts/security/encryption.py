"""
Field-level encryption for bank account details.

Account and routing numbers are stored as Fernet tokens (AES-128-CBC +
HMAC-SHA256). Only the bank account fetcher decrypts them, immediately
before a transfer is created; everything else sees a masked value.
"""

from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from creator_payouts.config import settings


class DecryptionError(Exception):
    """Stored ciphertext could not be decrypted with the configured key."""


class FieldCipher:
    """Encrypt/decrypt individual string fields with a shared Fernet key."""

    def __init__(self, key: str | bytes):
        if not key:
            raise ValueError("A Fernet key is required for field encryption")
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, value: str) -> str:
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, ValueError) as e:
            raise DecryptionError("Unable to decrypt stored field") from e

    def decrypt_optional(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        return self.decrypt(token)


def mask_account_number(account_number: Optional[str], visible: int = 4) -> str:
    """``0123456789`` -> ``******6789``."""
    if not account_number:
        return ""
    if len(account_number) <= visible:
        return "*" * len(account_number)
    return "*" * (len(account_number) - visible) + account_number[-visible:]


@lru_cache
def get_field_cipher() -> FieldCipher:
    """Process-wide cipher built from ``FIELD_ENCRYPTION_KEY``."""
    return FieldCipher(settings.field_encryption_key)
