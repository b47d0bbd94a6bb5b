"""
Encryption utilities for platform credentials (API keys, OAuth secrets).
Uses Fernet symmetric encryption with the configured ENCRYPTION_KEY.
"""
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def _get_fernet():
    """Get a Fernet cipher using the configured encryption key."""
    from cryptography.fernet import Fernet
    from src.config import get_settings
    settings = get_settings()

    key = settings.encryption_key
    if not key:
        logger.warning("ENCRYPTION_KEY not configured - credentials are stored as-is")
        return None

    return Fernet(key.encode() if isinstance(key, str) else key)


def encrypt_value(plaintext: str) -> str:
    """
    Encrypt a credential value. Returns the Fernet token as a string.
    Without an encryption key the value is stored as-is (development only).
    """
    if not plaintext:
        return plaintext

    fernet = _get_fernet()
    if fernet is None:
        return plaintext

    return fernet.encrypt(plaintext.encode()).decode()


def decrypt_value(encrypted: str) -> Optional[str]:
    """
    Decrypt a credential value. Returns None when the token cannot be
    decrypted with the configured key, so callers treat it as missing.
    """
    if not encrypted:
        return encrypted

    fernet = _get_fernet()
    if fernet is None:
        return encrypted

    from cryptography.fernet import InvalidToken
    try:
        return fernet.decrypt(encrypted.encode()).decode()
    except InvalidToken:
        logger.error("Credential decryption failed - wrong ENCRYPTION_KEY or corrupt value")
        return None
