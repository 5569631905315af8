"""
Tests for the notification inbox (/api/notifications) and retention cleanup.
"""

import logging
from datetime import timedelta

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import models
from services.cleanup import run_cleanup
from services.notifications import cleanup_old_notifications, notify
from tests.conftest import auth_headers, emitted
from time_utils import utc_now

logger = logging.getLogger(__name__)


def _seed(db: Session, user: models.User, count: int, age: timedelta = timedelta(0), read: bool = False):
    created = []
    for index in range(count):
        notification = models.Notification(
            user_id=user.id,
            type=models.NotificationType.task_created,
            title=f"Notice {index}",
            message=f"Message {index}",
            data={},
            is_read=read,
            created_at=utc_now() - age - timedelta(seconds=count - index),
        )
        db.add(notification)
        created.append(notification)
    db.commit()
    return created


# ============== Listing ==============


def test_pagination(client: TestClient, owner: models.User, test_db: Session):
    _seed(test_db, owner, 12)

    response = client.get("/api/notifications", params={"page": 2, "limit": 5}, headers=auth_headers(owner))

    assert response.status_code == 200, response.text
    data = response.json()
    assert [n["title"] for n in data["notifications"]] == [f"Notice {i}" for i in (6, 5, 4, 3, 2)]
    assert data["pagination"] == {
        "current": 2,
        "pages": 3,
        "total": 12,
        "unread_count": 12,
        "last_7_days_count": 12,
    }


def test_empty_inbox(client: TestClient, owner: models.User):
    data = client.get("/api/notifications", headers=auth_headers(owner)).json()

    assert data["notifications"] == []
    assert data["pagination"]["pages"] == 0
    assert data["pagination"]["total"] == 0


def test_unread_only(client: TestClient, owner: models.User, test_db: Session):
    _seed(test_db, owner, 2, read=True)
    _seed(test_db, owner, 3)

    data = client.get("/api/notifications", params={"unread_only": True}, headers=auth_headers(owner)).json()

    assert data["pagination"]["total"] == 3
    assert all(not n["is_read"] for n in data["notifications"])


def test_last_7_days_single_page(client: TestClient, owner: models.User, test_db: Session):
    _seed(test_db, owner, 25)

    data = client.get(
        "/api/notifications", params={"last_7_days": True, "limit": 5}, headers=auth_headers(owner)
    ).json()

    assert len(data["notifications"]) == 25
    assert data["pagination"]["pages"] == 1


def test_listing_purges_expired(client: TestClient, owner: models.User, editor: models.User, test_db: Session):
    _seed(test_db, owner, 2, age=timedelta(days=8))
    _seed(test_db, owner, 1)
    _seed(test_db, editor, 1, age=timedelta(days=8))

    data = client.get("/api/notifications", headers=auth_headers(owner)).json()

    assert data["pagination"]["total"] == 1
    # Only the caller's notifications are purged
    assert test_db.query(models.Notification).filter(models.Notification.user_id == editor.id).count() == 1


def test_other_users_notifications_hidden(client: TestClient, owner: models.User, editor: models.User, test_db):
    _seed(test_db, editor, 3)

    assert client.get("/api/notifications", headers=auth_headers(owner)).json()["pagination"]["total"] == 0


# ============== Read state ==============


def test_unread_count_and_mark_read(client: TestClient, owner: models.User, test_db: Session, socket_emit):
    first, _ = _seed(test_db, owner, 2)

    assert client.get("/api/notifications/unread-count", headers=auth_headers(owner)).json() == {"unread_count": 2}

    response = client.put(f"/api/notifications/{first.id}/read", headers=auth_headers(owner))

    assert response.status_code == 200
    assert response.json()["is_read"] is True
    assert response.json()["read_at"] is not None
    assert client.get("/api/notifications/unread-count", headers=auth_headers(owner)).json() == {"unread_count": 1}

    updates = emitted(socket_emit, "notifications_updated")
    assert updates[-1] == ({"unread_count": 1}, f"user_{owner.id}")


def test_mark_all_read(client: TestClient, owner: models.User, editor: models.User, test_db: Session):
    _seed(test_db, owner, 3)
    _seed(test_db, editor, 2)

    response = client.put("/api/notifications/mark-all-read", headers=auth_headers(owner))

    assert response.status_code == 200
    assert client.get("/api/notifications/unread-count", headers=auth_headers(owner)).json()["unread_count"] == 0
    assert client.get("/api/notifications/unread-count", headers=auth_headers(editor)).json()["unread_count"] == 2


def test_cannot_touch_someone_elses_notification(
    client: TestClient, owner: models.User, editor: models.User, test_db: Session
):
    (theirs,) = _seed(test_db, editor, 1)

    assert client.put(f"/api/notifications/{theirs.id}/read", headers=auth_headers(owner)).status_code == 404
    response = client.delete(f"/api/notifications/{theirs.id}", headers=auth_headers(owner))
    assert response.status_code == 404
    assert response.json()["detail"] == "Notification not found"


# ============== Delete ==============


def test_delete_one_and_all(client: TestClient, owner: models.User, editor: models.User, test_db: Session):
    first, _, _ = _seed(test_db, owner, 3)
    _seed(test_db, editor, 1)

    assert client.delete(f"/api/notifications/{first.id}", headers=auth_headers(owner)).status_code == 200
    assert client.get("/api/notifications", headers=auth_headers(owner)).json()["pagination"]["total"] == 2

    assert client.delete("/api/notifications", headers=auth_headers(owner)).status_code == 200
    assert client.get("/api/notifications", headers=auth_headers(owner)).json()["pagination"]["total"] == 0
    assert test_db.query(models.Notification).count() == 1


# ============== Services ==============


def test_notify_queues_push(owner: models.User, test_db: Session):
    class RecordingPublisher:
        def __init__(self):
            self.sent = []

        def to_user(self, user_id, event, data):
            self.sent.append((user_id, event.value, data))

    publisher = RecordingPublisher()

    notification = notify(
        test_db, owner.id, models.NotificationType.friend_request, "Hi", "Hello there",
        publisher=publisher, data={"request_id": 1},
    )
    test_db.commit()

    assert notification.id is not None
    assert len(publisher.sent) == 1
    user_id, event, payload = publisher.sent[0]
    assert (user_id, event) == (owner.id, "notification_received")
    assert payload["id"] == notification.id
    assert payload["data"] == {"request_id": 1}


def test_cleanup_old_notifications_all_users(owner: models.User, editor: models.User, test_db: Session):
    _seed(test_db, owner, 2, age=timedelta(days=10))
    _seed(test_db, editor, 1, age=timedelta(days=10))
    _seed(test_db, editor, 1)

    deleted = cleanup_old_notifications(test_db, days=7)

    assert deleted == 3
    assert test_db.query(models.Notification).count() == 1


def test_run_cleanup(project: models.Project, owner: models.User, test_db: Session):
    _seed(test_db, owner, 1, age=timedelta(days=30))
    for index in range(20):
        test_db.add(
            models.Activity(
                project_id=project.id,
                user_id=owner.id,
                type=models.ActivityType.task_created,
                action="created a task",
                target_title=f"task {index}",
            )
        )
    test_db.commit()

    counts = run_cleanup(test_db)

    assert counts == {"notifications": 1, "activities": 5}
    assert test_db.query(models.Activity).count() == 15
    logger.info("✓ Maintenance pass applies both retention rules")
