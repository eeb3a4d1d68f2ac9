"""
Encryption for stored Meta access tokens (businesses.facebook_access_token).

Fernet from `cryptography`, keyed by ENCRYPTION_KEY. Without a key outside
production, tokens are stored and read as plaintext so local setups work.
"""

import logging
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from autopilot.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def _fernet() -> Optional[Fernet]:
    settings = get_settings()
    key = settings.encryption_key
    if not key:
        if settings.is_production:
            raise RuntimeError("ENCRYPTION_KEY must be set in production.")
        logger.warning("ENCRYPTION_KEY not set, Meta access tokens are stored in plaintext (dev only).")
        return None
    try:
        return Fernet(key.encode())
    except ValueError as exc:
        raise RuntimeError(f"Invalid ENCRYPTION_KEY: {exc}") from exc


def encrypt_token(token: Optional[str]) -> Optional[str]:
    if not token:
        return token
    f = _fernet()
    return f.encrypt(token.encode()).decode() if f else token


def decrypt_token(stored: Optional[str]) -> Optional[str]:
    if not stored:
        return None
    f = _fernet()
    if f is None:
        return stored
    try:
        return f.decrypt(stored.encode()).decode()
    except InvalidToken:
        # Rows saved before encryption was switched on
        logger.warning("Stored Meta token is not Fernet ciphertext; using it as-is.")
        return stored


def resolve_access_token(business) -> Optional[str]:
    """Business's own token, else the configured system-user token, else None."""
    token = decrypt_token(getattr(business, "facebook_access_token", None))
    return token or get_settings().meta_system_user_token or None
