"""
Application configuration read from environment variables.

Security-sensitive settings (JWT secret, token lifetimes, cookie flags) live in
auth/security.py next to the code that uses them.
"""

import logging
import os

logger = logging.getLogger(__name__)


def _int_from_env(name: str, default: int, minimum: int, maximum: int) -> int:
    """Parse an integer env var, falling back to the default when invalid or out of range."""
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"⚠️  Invalid {name} value in environment. Using default of {default}.")
        return default
    if value < minimum or value > maximum:
        logger.warning(
            f"⚠️  {name}={value} is outside safe range ({minimum}-{maximum}). Using default of {default}."
        )
        return default
    return value


def _bool_from_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


ENVIRONMENT = os.environ.get("ENVIRONMENT", "development").lower()
LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG" if ENVIRONMENT == "development" else "INFO").upper()

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./projecthub.db")

# Comma separated list, shared by CORS and the Socket.IO server
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")
CORS_ORIGINS = [origin.strip() for origin in FRONTEND_URL.split(",") if origin.strip()]

NOTIFICATION_RETENTION_DAYS = _int_from_env("NOTIFICATION_RETENTION_DAYS", 7, 1, 365)
ACTIVITY_RETENTION_COUNT = _int_from_env("ACTIVITY_RETENTION_COUNT", 15, 1, 1000)
CLEANUP_INTERVAL_HOURS = _int_from_env("CLEANUP_INTERVAL_HOURS", 24, 1, 24 * 7)
CLEANUP_ENABLED = _bool_from_env("CLEANUP_ENABLED", True)

# Token lifetimes
ACCESS_TOKEN_EXPIRE_MINUTES = _int_from_env("ACCESS_TOKEN_EXPIRE_MINUTES", 15, 1, 1440)
REFRESH_TOKEN_EXPIRE_DAYS = _int_from_env("REFRESH_TOKEN_EXPIRE_DAYS", 7, 1, 90)

# Board limits
DEFAULT_DOING_COLUMN_LIMIT = _int_from_env("DEFAULT_DOING_COLUMN_LIMIT", 5, 1, 20)
MIN_DOING_COLUMN_LIMIT = 1
MAX_DOING_COLUMN_LIMIT = 20
