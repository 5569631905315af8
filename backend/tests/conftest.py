"""
Test configuration and fixtures for ProjectHub tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with database dependency override
- Authentication helpers (JWT token generation)
- Common fixtures for users, projects, members and tasks
- A recording mock in place of the Socket.IO server's emit
"""

import os
import sys
import logging
from datetime import timedelta
from typing import Callable, Dict, Generator, List, Optional
from unittest.mock import AsyncMock

# Configure the app for tests before anything reads the environment
os.environ.setdefault("ENVIRONMENT", "test")
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["CLEANUP_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
from main import app
import models
import realtime.server
from auth.security import hash_password, create_access_token

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

DEFAULT_PASSWORD = "secret123"


@pytest.fixture(scope="function")
def session_factory() -> Generator[sessionmaker, None, None]:
    """
    Fresh in-memory SQLite database per test; yields its session factory.
    """
    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def test_db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def socket_emit(monkeypatch) -> AsyncMock:
    """Record every Socket.IO emit instead of sending it."""
    emit = AsyncMock()
    monkeypatch.setattr(realtime.server.sio, "emit", emit)
    return emit


@pytest.fixture(scope="function")
def client(test_db: Session) -> Generator[TestClient, None, None]:
    """
    Create FastAPI test client with database dependency override.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def make_user(db: Session, username: str, full_name: Optional[str] = None, password: str = DEFAULT_PASSWORD) -> models.User:
    user = models.User(
        full_name=full_name or username.title(),
        username=username,
        email=f"{username}@test.com",
        password_hash=hash_password(password),
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.debug(f"Created user {username} with ID: {user.id}")
    return user


def create_auth_token(user: models.User, expires_delta: timedelta = None) -> str:
    """
    Helper to create JWT access token for a user.
    """
    return create_access_token({"sub": str(user.id), "email": user.email}, expires_delta)


def auth_headers(user: models.User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_auth_token(user)}"}


def add_member(db: Session, project: models.Project, user: models.User, role: str) -> models.ProjectMember:
    member = models.ProjectMember(project_id=project.id, user_id=user.id, role=models.ProjectRole(role))
    db.add(member)
    db.commit()
    db.refresh(member)
    return member


def emitted(emit: AsyncMock, event: str) -> List[tuple]:
    """(data, room) for every recorded emit of `event`."""
    return [
        (call.args[1], call.kwargs.get("room"))
        for call in emit.call_args_list
        if call.args and call.args[0] == event
    ]


@pytest.fixture(scope="function")
def owner(test_db: Session) -> models.User:
    """Project creator (admin member)."""
    return make_user(test_db, "alice", "Alice Admin")


@pytest.fixture(scope="function")
def editor(test_db: Session) -> models.User:
    return make_user(test_db, "bob", "Bob Editor")


@pytest.fixture(scope="function")
def viewer(test_db: Session) -> models.User:
    return make_user(test_db, "carol", "Carol Viewer")


@pytest.fixture(scope="function")
def outsider(test_db: Session) -> models.User:
    """Registered user with no membership in the test project."""
    return make_user(test_db, "dave", "Dave Outsider")


@pytest.fixture(scope="function")
def project(test_db: Session, owner: models.User, editor: models.User, viewer: models.User) -> models.Project:
    """
    Project created by `owner` with `editor` and `viewer` as members.
    """
    project = models.Project(
        name="Launch Plan",
        description="A project for testing",
        markdown_content="",
        creator_id=owner.id,
        doing_column_limit=3,
    )
    test_db.add(project)
    test_db.commit()
    test_db.refresh(project)

    add_member(test_db, project, owner, "admin")
    add_member(test_db, project, editor, "editor")
    add_member(test_db, project, viewer, "viewer")
    test_db.refresh(project)

    logger.debug(f"Created project with ID: {project.id}")
    return project


@pytest.fixture(scope="function")
def make_task(test_db: Session, project: models.Project, owner: models.User) -> Callable[..., models.Task]:
    """
    Factory appending a task to the end of a column of the test project.
    """
    def _make_task(title: str, column: str = "todo", **kwargs) -> models.Task:
        position = (
            test_db.query(models.Task)
            .filter(
                models.Task.project_id == project.id,
                models.Task.column == models.TaskColumn(column),
                models.Task.is_archived == False,  # noqa: E712
            )
            .count()
        )
        task = models.Task(
            title=title,
            project_id=project.id,
            column=models.TaskColumn(column),
            position=position,
            created_by_id=owner.id,
            tags=[],
            **kwargs,
        )
        test_db.add(task)
        test_db.commit()
        test_db.refresh(task)
        return task

    return _make_task


def column_titles(client: TestClient, project_id: int, user: models.User) -> Dict[str, List[str]]:
    """Board as {column: [titles in position order]}."""
    response = client.get(f"/api/tasks/project/{project_id}", headers=auth_headers(user))
    assert response.status_code == 200, response.text
    return {column: [task["title"] for task in tasks] for column, tasks in response.json().items()}
