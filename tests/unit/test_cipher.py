"""Tests for at-rest secret protection."""

import pytest
from cryptography.fernet import Fernet

from analytics_ingest.cipher import FernetCipher, PlaintextCipher, create_cipher
from analytics_ingest.config import Settings


class TestPlaintextCipher:
    def test_passthrough(self) -> None:
        cipher = PlaintextCipher()
        assert cipher.encrypt("s3cret") == "s3cret"
        assert cipher.decrypt("s3cret") == "s3cret"


class TestFernetCipher:
    def test_stored_value_is_not_plaintext(self) -> None:
        cipher = FernetCipher(Fernet.generate_key())
        stored = cipher.encrypt("a" * 64)
        assert "a" * 64 not in stored
        assert cipher.decrypt(stored) == "a" * 64

    def test_wrong_key_raises_value_error(self) -> None:
        stored = FernetCipher(Fernet.generate_key()).encrypt("s3cret")
        with pytest.raises(ValueError, match="cannot be decrypted"):
            FernetCipher(Fernet.generate_key()).decrypt(stored)


class TestCreateCipher:
    def test_plaintext_by_default(self) -> None:
        s = Settings(_env_file=None, secret_encryption_key=None)  # type: ignore[call-arg]
        assert isinstance(create_cipher(s), PlaintextCipher)

    def test_fernet_when_key_configured(self) -> None:
        key = Fernet.generate_key().decode()
        s = Settings(_env_file=None, secret_encryption_key=key)  # type: ignore[call-arg]
        cipher = create_cipher(s)
        assert isinstance(cipher, FernetCipher)
        assert cipher.decrypt(cipher.encrypt("x")) == "x"
