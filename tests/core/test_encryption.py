"""Tests for encryption utilities."""

import pytest
from cryptography.fernet import Fernet, InvalidToken

from agent_runner.core.config import settings
from agent_runner.core.encryption import (
    decrypt_data,
    decrypt_json,
    encrypt_data,
    encrypt_json,
)


@pytest.fixture
def valid_encryption_key():
    """Generate a valid encryption key for testing."""
    return Fernet.generate_key().decode()


@pytest.fixture
def no_default_key(mocker):
    mocker.patch.object(settings, "encryption_key", None)


def test_encrypt_data_success(valid_encryption_key):
    """Test successful data encryption."""
    plaintext = "my-secret-api-key"

    encrypted = encrypt_data(plaintext, valid_encryption_key)

    assert encrypted != plaintext
    assert decrypt_data(encrypted, valid_encryption_key) == plaintext


def test_encrypt_data_uses_configured_key():
    """Without an explicit key the ENCRYPTION_KEY setting is used."""
    encrypted = encrypt_data("client-secret")

    assert decrypt_data(encrypted, settings.encryption_key) == "client-secret"


def test_encrypt_data_empty_key(no_default_key):
    """Test encryption without any key raises ValueError."""
    with pytest.raises(ValueError, match="Encryption key is required"):
        encrypt_data("some data", "")


def test_decrypt_data_empty_key(no_default_key):
    """Test decryption without any key raises ValueError."""
    with pytest.raises(ValueError, match="Encryption key is required"):
        decrypt_data("some encrypted data")


def test_encrypt_data_invalid_key():
    """Test encryption with invalid key raises exception."""
    with pytest.raises(ValueError):
        encrypt_data("some data", "invalid-key")


def test_decrypt_data_wrong_key(valid_encryption_key):
    """Test decryption with wrong key raises InvalidToken."""
    encrypted = encrypt_data("secret", valid_encryption_key)

    with pytest.raises(InvalidToken):
        decrypt_data(encrypted, Fernet.generate_key().decode())


def test_decrypt_data_corrupted(valid_encryption_key):
    """Test decryption of corrupted data raises InvalidToken."""
    with pytest.raises(InvalidToken):
        decrypt_data("not-encrypted-data", valid_encryption_key)


def test_encrypt_produces_different_ciphertexts(valid_encryption_key):
    """Fernet includes a timestamp and IV, so equal input encrypts differently."""
    first = encrypt_data("same data", valid_encryption_key)
    second = encrypt_data("same data", valid_encryption_key)

    assert first != second


def test_encrypt_json(valid_encryption_key):
    env = {"LINEAR_API_KEY": "lin_api_123", "REGION": "eu"}

    encrypted = encrypt_json(env, valid_encryption_key)

    assert "lin_api_123" not in encrypted
    assert decrypt_json(encrypted, valid_encryption_key) == env
