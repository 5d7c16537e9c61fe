"""Encryption utilities for connector secrets."""

import json

from cryptography.fernet import Fernet

from agent_runner.core.config import settings


def _fernet(key: str | None) -> Fernet:
    key = key or settings.encryption_key
    if not key:
        raise ValueError("Encryption key is required")
    return Fernet(key.encode())


def encrypt_data(data: str, key: str | None = None) -> str:
    """Encrypt data using Fernet symmetric encryption.

    Args:
        data: The plaintext string to encrypt
        key: Base64-encoded 32-byte key. Defaults to ``ENCRYPTION_KEY``.

    Returns:
        Base64-encoded encrypted string

    Raises:
        ValueError: If no key is available
    """
    return _fernet(key).encrypt(data.encode()).decode()


def decrypt_data(encrypted_data: str, key: str | None = None) -> str:
    """Decrypt data produced by :func:`encrypt_data`.

    Raises:
        ValueError: If no key is available
        cryptography.fernet.InvalidToken: If decryption fails
    """
    return _fernet(key).decrypt(encrypted_data.encode()).decode()


def encrypt_json(value: dict[str, str], key: str | None = None) -> str:
    """Serialize a mapping to JSON and encrypt it."""
    return encrypt_data(json.dumps(value), key)


def decrypt_json(encrypted_data: str, key: str | None = None) -> dict[str, str]:
    """Inverse of :func:`encrypt_json`."""
    return json.loads(decrypt_data(encrypted_data, key))
