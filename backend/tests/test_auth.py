"""
Tests for authentication endpoints (/api/auth).

Tests cover:
- Registration validation and uniqueness
- Login, /me and inactive accounts
- Refresh token rotation and revocation
- Logout
"""

import logging
from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import models
from tests.conftest import DEFAULT_PASSWORD, auth_headers, create_auth_token

logger = logging.getLogger(__name__)


def _register(client: TestClient, **overrides):
    body = {
        "full_name": "Erin Example",
        "username": "erin_x",
        "email": "erin@test.com",
        "password": "hunter22",
    }
    body.update(overrides)
    return client.post("/api/auth/register", json=body)


def _login(client: TestClient, email: str, password: str = DEFAULT_PASSWORD):
    return client.post("/api/auth/login", json={"email": email, "password": password})


# ============== Registration ==============


def test_register_creates_user(client: TestClient, test_db: Session):
    response = _register(client)

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["username"] == "erin_x"
    assert data["email"] == "erin@test.com"
    assert "password_hash" not in data

    user = test_db.query(models.User).filter(models.User.username == "erin_x").one()
    assert user.password_hash != "hunter22"
    logger.info("✓ Registration stores a hashed password")


def test_register_duplicate_email(client: TestClient, owner: models.User):
    response = _register(client, email=owner.email.upper())

    assert response.status_code == 400
    assert response.json()["detail"] == "Email already registered"


def test_register_duplicate_username(client: TestClient, owner: models.User):
    response = _register(client, username="ALICE")

    assert response.status_code == 400
    assert response.json()["detail"] == "Username already taken"


def test_register_validation(client: TestClient):
    assert _register(client, username="no spaces").status_code == 422
    assert _register(client, username="ab").status_code == 422
    assert _register(client, password="12345").status_code == 422
    assert _register(client, full_name="E").status_code == 422
    assert _register(client, full_name="  E  ").status_code == 422
    assert _register(client, email="not-an-email").status_code == 422


# ============== Login ==============


def test_login_and_me(client: TestClient, owner: models.User):
    response = _login(client, owner.email)

    assert response.status_code == 200, response.text
    token = response.json()["access_token"]
    assert response.json()["token_type"] == "bearer"
    assert "refresh_token" in response.cookies

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["id"] == owner.id
    logger.info("✓ Login returns a usable access token")


def test_login_wrong_password(client: TestClient, owner: models.User):
    response = _login(client, owner.email, "wrong-password")

    assert response.status_code == 401


def test_login_unknown_email(client: TestClient):
    assert _login(client, "nobody@test.com").status_code == 401


def test_login_inactive_user(client: TestClient, owner: models.User, test_db: Session):
    owner.is_active = False
    test_db.commit()

    assert _login(client, owner.email).status_code == 403


def test_me_requires_token(client: TestClient):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_expired_token_rejected(client: TestClient, owner: models.User):
    token = create_auth_token(owner, expires_delta=timedelta(seconds=-5))

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_inactive_user_token_forbidden(client: TestClient, owner: models.User, test_db: Session):
    headers = auth_headers(owner)
    owner.is_active = False
    test_db.commit()

    assert client.get("/api/auth/me", headers=headers).status_code == 403


# ============== Refresh / logout ==============


def test_refresh_rotates_token(client: TestClient, owner: models.User, test_db: Session):
    assert _login(client, owner.email).status_code == 200
    first = test_db.query(models.RefreshToken).filter(models.RefreshToken.user_id == owner.id).one()

    response = client.post("/api/auth/refresh")

    assert response.status_code == 200, response.text
    assert response.json()["access_token"]

    test_db.expire_all()
    tokens = test_db.query(models.RefreshToken).filter(models.RefreshToken.user_id == owner.id).all()
    assert len(tokens) == 2
    revoked = {token.token_jti: token.is_revoked for token in tokens}
    assert revoked[first.token_jti] is True
    assert sum(1 for is_revoked in revoked.values() if not is_revoked) == 1
    logger.info("✓ Refresh revokes the old token and issues a new one")


def test_refresh_with_revoked_token(client: TestClient, owner: models.User, test_db: Session):
    assert _login(client, owner.email).status_code == 200
    test_db.query(models.RefreshToken).update({models.RefreshToken.is_revoked: True})
    test_db.commit()

    assert client.post("/api/auth/refresh").status_code == 401


def test_refresh_without_cookie(client: TestClient):
    assert client.post("/api/auth/refresh").status_code == 401


def test_access_token_cannot_refresh(client: TestClient, owner: models.User):
    client.cookies.set("refresh_token", create_auth_token(owner))

    assert client.post("/api/auth/refresh").status_code == 401


def test_logout_revokes_refresh_token(client: TestClient, owner: models.User, test_db: Session):
    assert _login(client, owner.email).status_code == 200

    response = client.post("/api/auth/logout")

    assert response.status_code == 204
    test_db.expire_all()
    token = test_db.query(models.RefreshToken).filter(models.RefreshToken.user_id == owner.id).one()
    assert token.is_revoked is True


def test_logout_without_session(client: TestClient):
    assert client.post("/api/auth/logout").status_code == 204


def test_token_lifetimes_come_from_config():
    import config
    from auth.security import create_access_token, create_refresh_token, verify_token
    from time_utils import utc_now

    before = utc_now()
    payload = verify_token(create_access_token({"sub": "1"}), expected_type="access")
    _, _, refresh_expiry = create_refresh_token({"sub": "1"})

    access_lifetime = payload["exp"] - int(before.timestamp())
    assert abs(access_lifetime - config.ACCESS_TOKEN_EXPIRE_MINUTES * 60) <= 5
    assert abs((refresh_expiry - before) - timedelta(days=config.REFRESH_TOKEN_EXPIRE_DAYS)) < timedelta(seconds=5)
