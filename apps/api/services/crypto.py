"""
Fernet encryption for third-party credentials stored at rest.
"""

import base64

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import settings


def _get_fernet() -> Fernet:
    """Get Fernet instance from ENCRYPTION_KEY."""
    key = settings.ENCRYPTION_KEY

    # Keys that are not exactly 32 bytes are stretched with PBKDF2
    if len(key) != 32:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=b"reel_credits_crm_salt",
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(key.encode()))
    else:
        key = base64.urlsafe_b64encode(key.encode())

    return Fernet(key)


def encrypt_secret(secret: str) -> str:
    """
    Encrypt a credential (e.g. a CRM API key) for storage.

    Args:
        secret: Plain text credential

    Returns:
        Base64-encoded ciphertext
    """
    return _get_fernet().encrypt(secret.encode()).decode()


def decrypt_secret(ciphertext: str) -> str:
    """Decrypt a value produced by encrypt_secret."""
    return _get_fernet().decrypt(ciphertext.encode()).decode()
