"""Fernet encryption for opaque card tokens."""

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from storefront.core.config import get_settings


def _get_fernet(key: str | None = None) -> Fernet:
    if key is None:
        key = get_settings().card_token_key
    if not key or len(key) != 44:
        # Derive from secret_key for dev when CARD_TOKEN_KEY not set
        secret = (key or get_settings().secret_key).encode()
        digest = hashlib.sha256(secret).digest()
        key = base64.urlsafe_b64encode(digest).decode()
    return Fernet(key.encode())


def encrypt_payload(plain: bytes, key: str | None = None) -> str:
    return _get_fernet(key).encrypt(plain).decode()


def decrypt_payload(encrypted: str, key: str | None = None) -> bytes | None:
    """Return the plaintext, or None when the ciphertext was not issued with this key."""
    if not encrypted:
        return None
    try:
        return _get_fernet(key).decrypt(encrypted.encode())
    except (InvalidToken, ValueError):
        return None
