"""
Tests for project lifecycle endpoints (/api/projects).

Tests cover:
- Creating projects with member invitations
- Listing active and archived projects
- Settings, board settings and markdown
- Archive / unarchive and permanent deletion
- Access rules for non-members and low roles
"""

import logging

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import models
from tests.conftest import DEFAULT_PASSWORD, auth_headers, emitted, make_user

logger = logging.getLogger(__name__)


def _notifications(db: Session, user: models.User, type_: models.NotificationType):
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user.id, models.Notification.type == type_)
        .all()
    )


# ============== Create / list ==============


def test_create_project(client: TestClient, owner: models.User, editor: models.User, test_db: Session):
    response = client.post(
        "/api/projects",
        json={
            "name": "  Website Relaunch ",
            "description": "New marketing site",
            "member_emails": [editor.email.upper(), "ghost@test.com", owner.email, ""],
        },
        headers=auth_headers(owner),
    )

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["name"] == "Website Relaunch"
    assert data["doing_column_limit"] == 5
    assert [(m["user"]["id"], m["role"]) for m in data["members"]] == [(owner.id, "admin")]

    assert len(data["invitations"]) == 1
    invitation = data["invitations"][0]
    assert invitation["user"]["id"] == editor.id
    assert invitation["role"] == "viewer"
    assert invitation["status"] == "pending"

    notes = _notifications(test_db, editor, models.NotificationType.project_invitation)
    assert len(notes) == 1
    assert notes[0].invitation_id == invitation["id"]
    logger.info("✓ Creator is admin and registered emails get viewer invitations")


def test_create_project_emits_to_creator(client: TestClient, owner: models.User, socket_emit):
    response = client.post("/api/projects", json={"name": "Solo"}, headers=auth_headers(owner))
    assert response.status_code == 201

    events = emitted(socket_emit, "project_created")
    assert len(events) == 1
    data, room = events[0]
    assert room == f"user_{owner.id}"
    assert data["project"]["name"] == "Solo"


def test_create_project_validation(client: TestClient, owner: models.User):
    response = client.post("/api/projects", json={"name": ""}, headers=auth_headers(owner))
    assert response.status_code == 422


def test_create_project_blank_name_rejected(client: TestClient, owner: models.User, test_db: Session):
    response = client.post("/api/projects", json={"name": "   "}, headers=auth_headers(owner))
    assert response.status_code == 422

    response = client.post("/api/projects", json={"name": "  Launch  "}, headers=auth_headers(owner))
    assert response.status_code == 201, response.text
    assert response.json()["name"] == "Launch"
    assert test_db.query(models.Project).count() == 1


def test_create_project_requires_auth(client: TestClient):
    assert client.post("/api/projects", json={"name": "Nope"}).status_code == 401


def test_list_projects(client: TestClient, project: models.Project, viewer: models.User, outsider: models.User):
    response = client.get("/api/projects", headers=auth_headers(viewer))

    assert response.status_code == 200
    assert [p["id"] for p in response.json()] == [project.id]

    response = client.get("/api/projects", headers=auth_headers(outsider))
    assert response.json() == []


def test_archived_projects_listed_separately(
    client: TestClient, project: models.Project, owner: models.User, test_db: Session
):
    project.is_archived = True
    test_db.commit()

    assert client.get("/api/projects", headers=auth_headers(owner)).json() == []
    archived = client.get("/api/projects/archived", headers=auth_headers(owner)).json()
    assert [p["id"] for p in archived] == [project.id]


def test_get_project(client: TestClient, project: models.Project, viewer: models.User):
    response = client.get(f"/api/projects/{project.id}", headers=auth_headers(viewer))

    assert response.status_code == 200
    assert response.json()["name"] == "Launch Plan"
    assert len(response.json()["members"]) == 3


def test_outsider_gets_404(client: TestClient, project: models.Project, outsider: models.User):
    response = client.get(f"/api/projects/{project.id}", headers=auth_headers(outsider))

    assert response.status_code == 404
    assert response.json()["detail"] == "Project not found"


def test_missing_project_404(client: TestClient, owner: models.User):
    assert client.get("/api/projects/9999", headers=auth_headers(owner)).status_code == 404


# ============== Settings ==============


def test_update_settings_with_rename_notification(
    client: TestClient,
    project: models.Project,
    owner: models.User,
    editor: models.User,
    viewer: models.User,
    test_db: Session,
    socket_emit,
):
    response = client.put(
        f"/api/projects/{project.id}/settings",
        json={"name": "Launch Plan v2", "doing_column_limit": 4, "notify_name_change": True},
        headers=auth_headers(owner),
    )

    assert response.status_code == 200, response.text
    assert response.json()["name"] == "Launch Plan v2"
    assert response.json()["doing_column_limit"] == 4

    for member in (editor, viewer):
        notes = _notifications(test_db, member, models.NotificationType.project_name_changed)
        assert len(notes) == 1
        assert notes[0].data["old_name"] == "Launch Plan"
    assert _notifications(test_db, owner, models.NotificationType.project_name_changed) == []

    updated = emitted(socket_emit, "project_updated")
    assert len(updated) == 1
    rooms = updated[0][1]
    assert f"project_{project.id}" in rooms
    assert f"user_{viewer.id}" in rooms
    assert emitted(socket_emit, "project_info_updated")


def test_rename_without_notification(
    client: TestClient, project: models.Project, owner: models.User, editor: models.User, test_db: Session
):
    response = client.put(
        f"/api/projects/{project.id}/settings", json={"name": "Quiet Rename"}, headers=auth_headers(owner)
    )

    assert response.status_code == 200
    assert _notifications(test_db, editor, models.NotificationType.project_name_changed) == []


def test_settings_require_admin(client: TestClient, project: models.Project, editor: models.User):
    response = client.put(
        f"/api/projects/{project.id}/settings", json={"name": "Hijack"}, headers=auth_headers(editor)
    )

    assert response.status_code == 403
    assert response.json()["detail"] == "Insufficient permissions. Required role: admin"


def test_board_settings(client: TestClient, project: models.Project, owner: models.User, viewer: models.User):
    response = client.get(f"/api/projects/{project.id}/board-settings", headers=auth_headers(viewer))
    assert response.json() == {"doing_limit": 3}

    response = client.put(
        f"/api/projects/{project.id}/board-settings", json={"doing_limit": 7}, headers=auth_headers(owner)
    )
    assert response.status_code == 200
    assert response.json() == {"doing_limit": 7}

    response = client.put(
        f"/api/projects/{project.id}/board-settings", json={"doing_limit": 0}, headers=auth_headers(owner)
    )
    assert response.status_code == 422

    response = client.put(
        f"/api/projects/{project.id}/board-settings", json={"doing_limit": 2}, headers=auth_headers(viewer)
    )
    assert response.status_code == 403


def test_update_markdown(client: TestClient, project: models.Project, owner: models.User, editor: models.User):
    response = client.put(
        f"/api/projects/{project.id}/markdown",
        json={"content": "# Goals\n- ship it"},
        headers=auth_headers(owner),
    )
    assert response.status_code == 200
    assert response.json()["markdown_content"] == "# Goals\n- ship it"

    response = client.put(
        f"/api/projects/{project.id}/markdown", json={"content": "x"}, headers=auth_headers(editor)
    )
    assert response.status_code == 403


# ============== Archive / delete ==============


def test_archive_and_unarchive(
    client: TestClient, project: models.Project, owner: models.User, editor: models.User, test_db: Session
):
    response = client.post(f"/api/projects/{project.id}/archive", headers=auth_headers(owner))

    assert response.status_code == 200, response.text
    assert response.json()["is_archived"] is True
    assert response.json()["archived_by"]["id"] == owner.id
    assert len(_notifications(test_db, editor, models.NotificationType.project_archived)) == 1

    again = client.post(f"/api/projects/{project.id}/archive", headers=auth_headers(owner))
    assert again.status_code == 400
    assert again.json()["detail"] == "Project is already archived"

    response = client.post(
        f"/api/projects/{project.id}/unarchive", json={"notify_members": False}, headers=auth_headers(owner)
    )
    assert response.status_code == 200
    assert response.json()["is_archived"] is False
    assert response.json()["archived_at"] is None
    assert _notifications(test_db, editor, models.NotificationType.project_unarchived) == []

    again = client.post(f"/api/projects/{project.id}/unarchive", headers=auth_headers(owner))
    assert again.status_code == 400
    assert again.json()["detail"] == "Project is not archived"


def test_archive_invalidates_pending_invitations(
    client: TestClient, project: models.Project, owner: models.User, test_db: Session
):
    erin = make_user(test_db, "erin")
    invite = client.post(
        f"/api/projects/{project.id}/invite", json={"email": erin.email}, headers=auth_headers(owner)
    )
    assert invite.status_code == 201
    invitation_id = invite.json()["id"]

    assert client.post(f"/api/projects/{project.id}/archive", headers=auth_headers(owner)).status_code == 200

    test_db.expire_all()
    invitation = test_db.get(models.ProjectInvitation, invitation_id)
    assert invitation.status == models.InvitationStatus.invalid
    notification = _notifications(test_db, erin, models.NotificationType.project_invitation)[0]
    assert notification.data["is_invalid"] is True

    response = client.put(
        f"/api/projects/{project.id}/invitation/{invitation_id}",
        json={"action": "accept"},
        headers=auth_headers(erin),
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "This invitation is no longer valid"


def test_archive_requires_admin(client: TestClient, project: models.Project, editor: models.User):
    assert client.post(f"/api/projects/{project.id}/archive", headers=auth_headers(editor)).status_code == 403


def test_delete_project(
    client: TestClient,
    project: models.Project,
    owner: models.User,
    editor: models.User,
    make_task,
    test_db: Session,
    socket_emit,
):
    make_task("Doomed")
    project_id = project.id

    response = client.request(
        "DELETE",
        f"/api/projects/{project_id}",
        json={"project_name": "Launch Plan", "password": DEFAULT_PASSWORD},
        headers=auth_headers(owner),
    )

    assert response.status_code == 200, response.text
    assert response.json()["message"] == "Project deleted successfully"

    test_db.expire_all()
    assert test_db.get(models.Project, project_id) is None
    assert test_db.query(models.Task).filter(models.Task.project_id == project_id).count() == 0
    assert test_db.query(models.ProjectMember).filter(models.ProjectMember.project_id == project_id).count() == 0

    notes = _notifications(test_db, editor, models.NotificationType.project_deleted)
    assert len(notes) == 1
    assert notes[0].project_id == project_id

    deleted = emitted(socket_emit, "project_deleted")
    assert deleted and deleted[0][0]["project_id"] == project_id
    logger.info("✓ Project and its content are gone, notifications survive")


def test_delete_project_wrong_name(client: TestClient, project: models.Project, owner: models.User):
    response = client.request(
        "DELETE",
        f"/api/projects/{project.id}",
        json={"project_name": "launch plan", "password": DEFAULT_PASSWORD},
        headers=auth_headers(owner),
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Project name does not match"


def test_delete_project_wrong_password(client: TestClient, project: models.Project, owner: models.User):
    response = client.request(
        "DELETE",
        f"/api/projects/{project.id}",
        json={"project_name": "Launch Plan", "password": "not-it"},
        headers=auth_headers(owner),
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Incorrect password"


def test_delete_project_requires_admin(client: TestClient, project: models.Project, editor: models.User):
    response = client.request(
        "DELETE",
        f"/api/projects/{project.id}",
        json={"project_name": "Launch Plan", "password": DEFAULT_PASSWORD},
        headers=auth_headers(editor),
    )

    assert response.status_code == 403


# ============== Read-only views ==============


def test_project_task_list(client: TestClient, project: models.Project, viewer: models.User, make_task):
    make_task("First")
    make_task("Second", column="done")
    make_task("Hidden", is_archived=True)

    response = client.get(f"/api/projects/{project.id}/tasks", headers=auth_headers(viewer))

    assert response.status_code == 200
    assert sorted(task["title"] for task in response.json()) == ["First", "Second"]


def test_health(client: TestClient):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
