"""
Session token encryption.

The Slack user token obtained at sign-in is kept in the session cookie, which
Starlette signs but does not encrypt. It is stored Fernet-encrypted instead.
Set ENCRYPTION_KEY to a key from Fernet.generate_key(); without one a key is
derived from SESSION_SECRET.
"""

import base64
import binascii
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from config import settings

logger = logging.getLogger(__name__)


def derive_key(secret: str) -> bytes:
    """Fernet key derived from an arbitrary secret string."""
    return base64.urlsafe_b64encode(hashlib.sha256(secret.encode()).digest())


class TokenEncryption:
    """Encrypts and decrypts tokens kept in the session."""

    def __init__(self, key: Optional[str] = None, fallback_secret: Optional[str] = None):
        key = settings.encryption_key if key is None else key
        fallback_secret = settings.session_secret if fallback_secret is None else fallback_secret

        self._cipher: Optional[Fernet] = None
        if key:
            try:
                self._cipher = Fernet(key.encode())
                logger.info("Token encryption initialized")
            except (ValueError, binascii.Error) as e:
                logger.error(f"Invalid ENCRYPTION_KEY, deriving one from SESSION_SECRET: {e}")
        else:
            logger.warning("ENCRYPTION_KEY not configured, deriving key from SESSION_SECRET")

        if self._cipher is None:
            self._cipher = Fernet(derive_key(fallback_secret))

    def encrypt(self, plaintext: str) -> str:
        return self._cipher.encrypt(plaintext.encode()).decode()

    def decrypt(self, encrypted: str) -> Optional[str]:
        """
        Decrypt a token.

        Returns None for anything that was not encrypted with the current key,
        including plaintext tokens left in sessions from older deployments.
        """
        try:
            return self._cipher.decrypt(encrypted.encode()).decode()
        except (InvalidToken, ValueError) as e:
            logger.warning(f"Could not decrypt session token: {type(e).__name__}")
            return None


# Global instance
_encryption_instance: Optional[TokenEncryption] = None


def get_token_encryption() -> TokenEncryption:
    """Get singleton token encryption instance."""
    global _encryption_instance
    if _encryption_instance is None:
        _encryption_instance = TokenEncryption()
    return _encryption_instance


def encrypt_token(token: str) -> str:
    return get_token_encryption().encrypt(token)


def decrypt_token(encrypted: Optional[str]) -> Optional[str]:
    """Plaintext of an encrypted token; None when missing or unreadable."""
    if not encrypted:
        return None
    return get_token_encryption().decrypt(encrypted)
