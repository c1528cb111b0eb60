"""At-rest protection for stored secrets.

Device secret keys and tenant store passwords are persisted through a
``SecretCipher``. The default ``PlaintextCipher`` stores them as-is, so the
stored value is directly usable as an HMAC key. Configuring
``SECRET_ENCRYPTION_KEY`` switches to Fernet envelope encryption.
"""

from __future__ import annotations

from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken

from analytics_ingest.config import Settings


class SecretCipher(Protocol):
    def encrypt(self, plaintext: str) -> str: ...

    def decrypt(self, stored: str) -> str: ...


class PlaintextCipher:
    """Passthrough cipher: secrets are stored unencrypted."""

    def encrypt(self, plaintext: str) -> str:
        return plaintext

    def decrypt(self, stored: str) -> str:
        return stored


class FernetCipher:
    """Symmetric Fernet encryption (AES-128-CBC + HMAC-SHA256)."""

    def __init__(self, key: str | bytes) -> None:
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, stored: str) -> str:
        """Decrypt a stored token.

        Raises:
            ValueError: token was not produced with this key.
        """
        try:
            return self._fernet.decrypt(stored.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Stored secret cannot be decrypted") from exc


def create_cipher(settings: Settings) -> SecretCipher:
    """Pick the cipher configured for this deployment."""
    if settings.secret_encryption_key is None:
        return PlaintextCipher()
    return FernetCipher(settings.secret_encryption_key.get_secret_value())
