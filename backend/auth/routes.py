"""
Authentication API endpoints.

This module provides REST API endpoints for:
- User registration
- Login/logout
- Token refresh with rotation
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status, Response, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import func
from sqlalchemy.orm import Session

from database import get_db
from models import User, RefreshToken
from schemas import TrimmedStr, UserResponse, USERNAME_PATTERN
from time_utils import utc_now
from auth.security import (
    hash_password,
    verify_password,
    create_access_token,
    create_refresh_token,
    verify_token,
    user_id_from_payload,
    COOKIE_SECURE,
    COOKIE_SAMESITE,
    COOKIE_DOMAIN,
    REFRESH_COOKIE_NAME,
    REFRESH_TOKEN_EXPIRE_DAYS,
)
from auth.dependencies import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


# Request/Response schemas
class RegisterRequest(BaseModel):
    full_name: TrimmedStr = Field(..., min_length=2, max_length=100)
    username: str = Field(..., min_length=3, max_length=30, pattern=USERNAME_PATTERN)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


def _issue_tokens(user: User, response: Response, db: Session) -> dict:
    """Create an access token, persist a new refresh token JTI and set the refresh cookie."""
    access_token = create_access_token({"sub": str(user.id), "email": user.email})
    refresh_token, jti, expires_at = create_refresh_token({"sub": str(user.id)})

    db.add(RefreshToken(user_id=user.id, token_jti=jti, expires_at=expires_at, is_revoked=False))

    # path must match delete_cookie in logout or the browser keeps the cookie
    response.set_cookie(
        key=REFRESH_COOKIE_NAME,
        value=refresh_token,
        path="/",
        httponly=True,
        secure=COOKIE_SECURE,
        samesite=COOKIE_SAMESITE,
        domain=COOKIE_DOMAIN,
        max_age=REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
    )
    return {"access_token": access_token, "token_type": "bearer"}


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a new user account.

    Raises:
        HTTPException: 400 if the email or username is already in use
    """
    email = request.email.lower()
    logger.info(f"Registration attempt for email: {email}")

    if db.query(User).filter(func.lower(User.email) == email).first():
        logger.info(f"Registration failed: email already exists: {email}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")

    if db.query(User).filter(func.lower(User.username) == request.username.lower()).first():
        logger.info(f"Registration failed: username already taken: {request.username}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already taken")

    new_user = User(
        full_name=request.full_name,
        username=request.username,
        email=email,
        password_hash=hash_password(request.password),
        is_active=True,
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)

    logger.critical(f"User registered successfully: {new_user.email} (ID: {new_user.id})")
    return new_user


@router.post("/login", response_model=TokenResponse)
def login(request: LoginRequest, response: Response, db: Session = Depends(get_db)):
    """
    Login with email and password.

    Returns the access token in the body and sets an httpOnly refresh token cookie.

    Raises:
        HTTPException: 401 if credentials are invalid, 403 if the account is inactive
    """
    email = request.email.lower()
    logger.info(f"Login attempt for email: {email}")

    user = db.query(User).filter(func.lower(User.email) == email).first()
    if not user or not verify_password(request.password, user.password_hash):
        logger.info(f"Login failed: invalid credentials for {email}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    if not user.is_active:
        logger.info(f"Login failed: inactive user: {email}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is inactive")

    tokens = _issue_tokens(user, response, db)
    user.last_login_at = utc_now()
    db.commit()

    logger.critical(f"User logged in successfully: {user.email} (ID: {user.id})")
    return tokens


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(request: Request, response: Response, db: Session = Depends(get_db)):
    """
    Revoke the refresh token from the cookie (if any) and clear the cookie.

    Does not require authentication so users can always log out, even with an
    expired access token.
    """
    refresh_token_str = request.cookies.get(REFRESH_COOKIE_NAME)
    if refresh_token_str:
        payload = verify_token(refresh_token_str, expected_type="refresh")
        token_jti = payload.get("jti") if payload else None
        if token_jti:
            db_token = db.query(RefreshToken).filter(RefreshToken.token_jti == token_jti).first()
            if db_token:
                db_token.is_revoked = True
                db.commit()
                logger.debug(f"Revoked refresh token with JTI: {token_jti}")

    response.delete_cookie(
        key=REFRESH_COOKIE_NAME,
        path="/",
        domain=COOKIE_DOMAIN,
        secure=COOKIE_SECURE,
        samesite=COOKIE_SAMESITE,
    )

    logger.critical("User logged out successfully")
    # The injected response does not inherit the decorator's status_code
    response.status_code = status.HTTP_204_NO_CONTENT
    return response


@router.post("/refresh", response_model=TokenResponse)
def refresh_token(request: Request, response: Response, db: Session = Depends(get_db)):
    """
    Exchange the refresh token cookie for a new access token.

    The presented refresh token is revoked and a new one is issued (rotation).

    Raises:
        HTTPException: 401 if the token is missing, invalid, unknown or revoked
    """
    refresh_token_str = request.cookies.get(REFRESH_COOKIE_NAME)
    if not refresh_token_str:
        logger.info("Token refresh failed: no refresh token cookie")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh token not found")

    payload = verify_token(refresh_token_str, expected_type="refresh")
    if not payload:
        logger.info("Token refresh failed: invalid token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")

    # Untracked tokens are rejected so revocation cannot be bypassed
    token_jti = payload.get("jti")
    db_token = db.query(RefreshToken).filter(RefreshToken.token_jti == token_jti).first()
    if not db_token or db_token.is_revoked:
        logger.info(f"Token refresh failed: token unknown or revoked (JTI: {token_jti})")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token not found or has been revoked",
        )

    user_id = user_id_from_payload(payload)
    user = db.query(User).filter(User.id == user_id).first() if user_id is not None else None
    if not user or not user.is_active:
        logger.info(f"Token refresh failed: user not found or inactive (ID: {user_id})")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found or inactive")

    db_token.is_revoked = True
    tokens = _issue_tokens(user, response, db)
    db.commit()

    logger.critical(f"Token refreshed successfully for user: {user.email} (ID: {user.id})")
    return tokens


@router.get("/me", response_model=UserResponse)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    logger.debug(f"Fetching user info for: {current_user.email}")
    return current_user
