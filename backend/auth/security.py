"""
Password hashing and JWT helpers.

- Passwords are hashed with Argon2id through passlib.
- Access tokens are short-lived JWTs sent as Bearer tokens (REST) or in the
  Socket.IO auth payload.
- Refresh tokens carry a unique JTI so each one can be revoked server-side.
"""

import logging
import os
import secrets
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Tuple

from jose import JWTError, jwt
from passlib.context import CryptContext

from config import ACCESS_TOKEN_EXPIRE_MINUTES, ENVIRONMENT, REFRESH_TOKEN_EXPIRE_DAYS
from time_utils import utc_now

logger = logging.getLogger(__name__)


def is_production_like() -> bool:
    """True when running in production or staging (strict secret and cookie rules)."""
    return ENVIRONMENT in ("production", "staging")


pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

SECRET_KEY = os.environ.get("JWT_SECRET_KEY")
if not SECRET_KEY:
    if is_production_like():
        raise ValueError(
            "JWT_SECRET_KEY environment variable is required in production. "
            "Generate a secure key with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
        )
    SECRET_KEY = "dev-insecure-key-" + secrets.token_urlsafe(32)
    logger.warning(
        "⚠️  JWT_SECRET_KEY not set! Using temporary development key. "
        "Tokens will not survive a restart. Set JWT_SECRET_KEY environment variable."
    )

SUPPORTED_ALGORITHMS = ["HS256", "HS384", "HS512"]
ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
if ALGORITHM not in SUPPORTED_ALGORITHMS:
    logger.warning(
        f"⚠️  Unsupported JWT_ALGORITHM={ALGORITHM}. Using HS256. "
        f"Supported: {', '.join(SUPPORTED_ALGORITHMS)}"
    )
    ALGORITHM = "HS256"

# Refresh cookie: HTTPS-only and strict in production, relaxed for local HTTP
REFRESH_COOKIE_NAME = "refresh_token"
COOKIE_SECURE = is_production_like()
COOKIE_SAMESITE = "strict" if is_production_like() else "lax"
COOKIE_DOMAIN = os.environ.get("COOKIE_DOMAIN", None)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    is_valid = pwd_context.verify(plain_password, hashed_password)
    logger.debug(f"Password verification result: {is_valid}")
    return is_valid


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Claims to encode, at least {"sub": str(user_id)}
        expires_delta: Optional custom lifetime

    Returns:
        Encoded JWT string with "type": "access"
    """
    to_encode = data.copy()
    expire = utc_now() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "type": "access"})
    logger.debug(f"Access token created for user {data.get('sub')}, expires at: {expire}")
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def create_refresh_token(
    data: Dict[str, Any], expires_delta: Optional[timedelta] = None
) -> Tuple[str, str, datetime]:
    """
    Create a JWT refresh token with a unique JTI.

    Returns:
        (encoded token, jti, expiry) so the caller can persist the JTI for revocation
    """
    to_encode = data.copy()
    expire = utc_now() + (expires_delta or timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS))
    jti = secrets.token_urlsafe(32)
    to_encode.update({"exp": expire, "type": "refresh", "jti": jti})
    logger.debug(f"Refresh token created with JTI: {jti}, expires at: {expire}")
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM), jti, expire


def verify_token(token: str, expected_type: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Verify and decode a JWT.

    Returns:
        The payload, or None when the signature, expiry or token type is wrong
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info(f"JWT verification failed: {str(e)}")
        return None

    if expected_type and payload.get("type") != expected_type:
        logger.info(f"Rejected {payload.get('type')} token where {expected_type} was expected")
        return None
    return payload


def user_id_from_payload(payload: Optional[Dict[str, Any]]) -> Optional[int]:
    """Extract the integer user id from a token's "sub" claim."""
    if not payload:
        return None
    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        return None
