"""
FastAPI dependencies for authentication.

Project-level authorization (viewer/editor/admin) lives in auth/permissions.py;
this module only answers "who is calling".
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from database import get_db
from models import User
from auth.security import verify_token, user_id_from_payload

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme for JWT authentication
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def resolve_user_from_token(token: str, db: Session) -> User:
    """
    Resolve an access token to an active user.

    Shared by the REST dependency and the Socket.IO connect handler.

    Raises:
        HTTPException: 401 for an invalid token or unknown user, 403 if inactive
    """
    payload = verify_token(token, expected_type="access")
    if payload is None:
        raise _unauthorized("Invalid or expired token")

    user_id = user_id_from_payload(payload)
    if user_id is None:
        logger.info("Token payload missing or malformed 'sub' claim")
        raise _unauthorized("Invalid token payload")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        logger.info(f"User not found for id: {user_id}")
        raise _unauthorized("User not found")

    if not user.is_active:
        logger.info(f"Inactive user attempted access: {user_id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """
    Extract and validate the current user from the Bearer access token.

    Example:
        @router.get("/api/users/profile")
        def profile(user: User = Depends(get_current_user)):
            return user
    """
    if not credentials or not credentials.credentials:
        logger.info("No authentication credentials provided")
        raise _unauthorized("Not authenticated")

    user = resolve_user_from_token(credentials.credentials, db)
    logger.debug(f"User authenticated via JWT: {user.email}")
    return user
