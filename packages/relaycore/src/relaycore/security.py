"""
Token and secret handling.

- JWT access tokens (python-jose) carrying user, tenant and role claims
- Fernet encryption for provider access tokens stored at rest
- HMAC-SHA256 signatures for gateway webhooks
"""

import hashlib
import hmac
import logging
from datetime import timedelta

from cryptography.fernet import Fernet, InvalidToken
from jose import JWTError, jwt

from relaycore.settings import get_settings
from relaycore.timeutil import utcnow

logger = logging.getLogger(__name__)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    if expires_delta:
        expire = utcnow() + expires_delta
    else:
        expire = utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


def encrypt_secret(value: str, encryption_key: str | None = None) -> str:
    """
    Encrypt a secret for storage.

    Without a key the value is stored as-is (development only).
    """
    key = encryption_key if encryption_key is not None else get_settings().ENCRYPTION_KEY
    if not key:
        logger.warning("ENCRYPTION_KEY not set, storing secret unencrypted")
        return value
    return Fernet(key.encode()).encrypt(value.encode()).decode()


def decrypt_secret(value: str | None, encryption_key: str | None = None) -> str | None:
    """
    Decrypt a stored secret.

    Returns None when the value cannot be decrypted with the configured key.
    """
    if not value:
        return None
    key = encryption_key if encryption_key is not None else get_settings().ENCRYPTION_KEY
    if not key:
        return value
    try:
        return Fernet(key.encode()).decrypt(value.encode()).decode()
    except InvalidToken:
        logger.error("Failed to decrypt stored secret: invalid token or key")
        return None


def sign_payload(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of a payload."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_payload_signature(payload: bytes, signature: str | None, secret: str) -> bool:
    """Constant-time comparison of a hex HMAC-SHA256 signature."""
    if not signature:
        return False
    if signature.startswith("sha256="):
        signature = signature[7:]
    return hmac.compare_digest(sign_payload(payload, secret), signature)
