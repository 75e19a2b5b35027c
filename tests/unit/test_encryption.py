"""
Test encryption service functionality.
"""

import pytest
from cryptography.fernet import Fernet

from leadflow.services import encryption_service
from leadflow.services.encryption_service import EncryptionError, decrypt_token, encrypt_token


@pytest.fixture(autouse=True)
def encryption_key(monkeypatch):
    monkeypatch.setattr(encryption_service.settings, "ENCRYPTION_KEY", Fernet.generate_key().decode())


@pytest.mark.parametrize(
    "token",
    [
        "simple_token",
        "token_with_special_chars_!@#$%^&*()",
        "very_long_token_" + "x" * 100,
    ],
)
def test_encrypt_decrypt(token):
    encrypted = encrypt_token(token)

    assert encrypted != token.encode()
    assert decrypt_token(encrypted) == token


def test_empty_token_rejected():
    with pytest.raises(EncryptionError):
        encrypt_token("")


def test_corrupted_token_rejected():
    with pytest.raises(EncryptionError):
        decrypt_token(b"not-a-fernet-token")


def test_missing_key(monkeypatch):
    monkeypatch.setattr(encryption_service.settings, "ENCRYPTION_KEY", None)

    with pytest.raises(EncryptionError, match="ENCRYPTION_KEY"):
        encrypt_token("token")
