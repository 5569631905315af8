"""
Project endpoints: lifecycle, settings, membership and invitations.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

import schemas
from config import ACTIVITY_RETENTION_COUNT, DEFAULT_DOING_COLUMN_LIMIT
from database import get_db
from models import (
    Activity,
    ActivityType,
    Bookmark,
    InvitationStatus,
    Notification,
    NotificationType,
    Project,
    ProjectInvitation,
    ProjectMember,
    ProjectRole,
    Task,
    User,
)
from auth.dependencies import get_current_user
from auth.permissions import (
    can,
    get_member_role,
    get_user_projects,
    require_project_permission,
)
from auth.security import verify_password
from realtime.events import EventPublisher, SocketEvent, get_publisher
from services.activity import record_activity
from services.notifications import invalidate_invitation_notifications, notify, notify_many
from time_utils import utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])


def _project_payload(project: Project) -> dict:
    return schemas.ProjectDetail.model_validate(project).model_dump(mode="json")


def _find_user_by_identifier(db: Session, identifier: str) -> Optional[User]:
    """Look a user up by email or username, case-insensitively."""
    value = identifier.strip().lower()
    return (
        db.query(User)
        .filter(or_(func.lower(User.email) == value, func.lower(User.username) == value))
        .first()
    )


def _invite(
    db: Session,
    project: Project,
    invitee: User,
    inviter: User,
    role: ProjectRole,
    publisher: EventPublisher,
) -> ProjectInvitation:
    invitation = ProjectInvitation(
        project_id=project.id,
        user_id=invitee.id,
        invited_by_id=inviter.id,
        role=role,
        status=InvitationStatus.pending,
    )
    db.add(invitation)
    db.flush()

    notify(
        db,
        invitee.id,
        NotificationType.project_invitation,
        "Project Invitation",
        f'You\'ve been invited to join the project "{project.name}" as {role.value}',
        publisher=publisher,
        project_id=project.id,
        invitation_id=invitation.id,
        data={
            "project_name": project.name,
            "role": role.value,
            "invited_by": {"id": inviter.id, "full_name": inviter.full_name},
        },
    )
    return invitation


def _invalidate_pending_invitations(db: Session, project: Project) -> int:
    pending = [inv for inv in project.invitations if inv.status == InvitationStatus.pending]
    for invitation in pending:
        invitation.status = InvitationStatus.invalid
    invalidate_invitation_notifications(db, [inv.id for inv in pending])
    return len(pending)


def _get_member(db: Session, project_id: int, member_id: int) -> ProjectMember:
    member = (
        db.query(ProjectMember)
        .filter(ProjectMember.id == member_id, ProjectMember.project_id == project_id)
        .first()
    )
    if member is None:
        logger.info(f"Member {member_id} not found in project {project_id}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")
    return member


# ============== Listing and lifecycle ==============

@router.get("", response_model=List[schemas.ProjectResponse])
def list_projects(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    logger.debug(f"Listing active projects for user {current_user.id}")
    return get_user_projects(current_user, db, archived=False)


@router.get("/archived", response_model=List[schemas.ProjectResponse])
def list_archived_projects(
    current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    logger.debug(f"Listing archived projects for user {current_user.id}")
    return get_user_projects(current_user, db, archived=True)


@router.post("", response_model=schemas.ProjectDetail, status_code=status.HTTP_201_CREATED)
def create_project(
    payload: schemas.ProjectCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """
    Create a project owned by the caller.

    The creator becomes an admin member. Every registered address in
    `member_emails` receives a pending viewer invitation; unknown addresses are
    skipped.
    """
    logger.info(f"User {current_user.id} creating project '{payload.name}'")

    project = Project(
        name=payload.name,
        description=payload.description,
        markdown_content="",
        creator_id=current_user.id,
        doing_column_limit=DEFAULT_DOING_COLUMN_LIMIT,
    )
    db.add(project)
    db.flush()
    db.add(ProjectMember(project_id=project.id, user_id=current_user.id, role=ProjectRole.admin))

    invited = set()
    for email in payload.member_emails:
        address = email.strip().lower()
        if not address:
            continue
        invitee = db.query(User).filter(func.lower(User.email) == address).first()
        if invitee is None:
            logger.debug(f"Skipping invitation for unregistered email {address}")
            continue
        if invitee.id == current_user.id or invitee.id in invited:
            continue
        _invite(db, project, invitee, current_user, ProjectRole.viewer, publisher)
        invited.add(invitee.id)

    db.commit()
    db.refresh(project)

    body = _project_payload(project)
    publisher.to_user(current_user.id, SocketEvent.project_created, {"project": body})
    logger.info(f"Project {project.id} created with {len(invited)} invitations")
    return project


@router.get("/{project_id}", response_model=schemas.ProjectDetail)
def get_project(
    project_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return require_project_permission(current_user, project_id, ProjectRole.viewer, db)


@router.put("/{project_id}/settings", response_model=schemas.ProjectDetail)
def update_project_settings(
    project_id: int,
    payload: schemas.ProjectSettingsUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Update name, description and board limit; optionally tell members about a rename."""
    project = require_project_permission(current_user, project_id, ProjectRole.admin, db)

    old_name = project.name
    updates = payload.model_dump(exclude_unset=True, exclude={"notify_name_change"})
    if updates.get("name") is not None:
        project.name = updates["name"]
    if "description" in updates:
        project.description = updates["description"]
    if updates.get("doing_column_limit") is not None:
        project.doing_column_limit = updates["doing_column_limit"]

    name_changed = project.name != old_name
    if name_changed and payload.notify_name_change:
        notify_many(
            db,
            project.member_ids,
            NotificationType.project_name_changed,
            "Project Name Updated",
            f'The project "{old_name}" has been renamed to "{project.name}" by {current_user.full_name}',
            publisher=publisher,
            exclude=[current_user.id],
            project_id=project.id,
            data={"old_name": old_name, "new_name": project.name},
        )

    db.commit()
    db.refresh(project)

    body = _project_payload(project)
    publisher.to_project_members(project.id, project.member_ids, SocketEvent.project_updated, {"project": body})
    publisher.to_project_members(
        project.id, project.member_ids, SocketEvent.project_info_updated, {"project_id": project.id, "project": body}
    )
    logger.info(f"Project {project.id} settings updated (name changed: {name_changed})")
    return project


@router.get("/{project_id}/board-settings", response_model=schemas.BoardSettings)
def get_board_settings(
    project_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    project = require_project_permission(current_user, project_id, ProjectRole.viewer, db)
    return {"doing_limit": project.doing_column_limit}


@router.put("/{project_id}/board-settings", response_model=schemas.BoardSettings)
def update_board_settings(
    project_id: int,
    payload: schemas.BoardSettings,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    project = require_project_permission(current_user, project_id, ProjectRole.admin, db)
    project.doing_column_limit = payload.doing_limit
    db.commit()

    publisher.to_project_members(
        project.id,
        project.member_ids,
        SocketEvent.project_updated,
        {"project_id": project.id, "doing_limit": payload.doing_limit},
    )
    logger.info(f"Project {project.id} doing limit set to {payload.doing_limit}")
    return {"doing_limit": project.doing_column_limit}


@router.put("/{project_id}/markdown", response_model=schemas.ProjectDetail)
def update_markdown(
    project_id: int,
    payload: schemas.MarkdownUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    project = require_project_permission(current_user, project_id, ProjectRole.admin, db)
    project.markdown_content = payload.content
    db.commit()
    db.refresh(project)

    publisher.to_project_members(
        project.id,
        project.member_ids,
        SocketEvent.project_info_updated,
        {"project_id": project.id, "markdown_content": project.markdown_content},
    )
    logger.debug(f"Project {project.id} markdown updated ({len(payload.content)} chars)")
    return project


# ============== Invitations ==============

@router.post(
    "/{project_id}/invite",
    response_model=schemas.InvitationResponse,
    status_code=status.HTTP_201_CREATED,
)
def invite_member(
    project_id: int,
    payload: schemas.InviteRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Invite a user (by email or username) to the project with the given role."""
    project = require_project_permission(current_user, project_id, ProjectRole.admin, db)

    invitee = _find_user_by_identifier(db, payload.email)
    if invitee is None:
        logger.info(f"Invite failed: no user matches '{payload.email}'")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if invitee.id == current_user.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot invite yourself")

    if invitee.id in project.member_ids:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="User is already a member of this project"
        )

    pending = (
        db.query(ProjectInvitation)
        .filter(
            ProjectInvitation.project_id == project.id,
            ProjectInvitation.user_id == invitee.id,
            ProjectInvitation.status == InvitationStatus.pending,
        )
        .first()
    )
    if pending:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="User already has a pending invitation"
        )

    invitation = _invite(db, project, invitee, current_user, payload.role, publisher)
    db.commit()
    db.refresh(invitation)

    logger.info(f"User {invitee.id} invited to project {project.id} as {payload.role.value}")
    return invitation


@router.put("/{project_id}/invitation/{invitation_id}")
def respond_to_invitation(
    project_id: int,
    invitation_id: int,
    payload: schemas.InvitationAction,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Accept or decline an invitation addressed to the caller."""
    invitation = (
        db.query(ProjectInvitation)
        .filter(ProjectInvitation.id == invitation_id, ProjectInvitation.project_id == project_id)
        .first()
    )
    if invitation is None or invitation.user_id != current_user.id:
        logger.info(f"Invitation {invitation_id} not found for user {current_user.id}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitation not found")

    project = invitation.project
    if invitation.status == InvitationStatus.invalid or project.is_archived:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="This invitation is no longer valid"
        )
    if invitation.status != InvitationStatus.pending:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invitation has already been processed"
        )

    accepted = payload.action == "accept"
    member_payload = None
    if accepted:
        invitation.status = InvitationStatus.accepted
        existing_members = list(project.member_ids)
        if current_user.id not in existing_members:
            member = ProjectMember(project_id=project.id, user_id=current_user.id, role=invitation.role)
            db.add(member)
            db.flush()
            member_payload = schemas.MemberResponse.model_validate(member).model_dump(mode="json")

        notify_many(
            db,
            existing_members,
            NotificationType.member_added,
            "New Team Member",
            f'{current_user.full_name} joined the project "{project.name}"',
            publisher=publisher,
            exclude=[current_user.id, invitation.invited_by_id],
            project_id=project.id,
            data={"user_id": current_user.id},
        )
        if invitation.invited_by_id:
            notify(
                db,
                invitation.invited_by_id,
                NotificationType.invitation_accepted,
                "Invitation Accepted",
                f'{current_user.full_name} accepted your invitation to join "{project.name}"',
                publisher=publisher,
                project_id=project.id,
                data={"user_id": current_user.id},
            )
        record_activity(
            db,
            project.id,
            current_user.id,
            ActivityType.member_added,
            f"joined the project as {invitation.role.value}",
            target_title=current_user.full_name,
            target_id=current_user.id,
        )
    else:
        invitation.status = InvitationStatus.declined
        if invitation.invited_by_id:
            notify(
                db,
                invitation.invited_by_id,
                NotificationType.invitation_declined,
                "Invitation Declined",
                f'{current_user.full_name} declined your invitation to join "{project.name}"',
                publisher=publisher,
                project_id=project.id,
                data={"user_id": current_user.id},
            )

    action_taken = "accepted" if accepted else "declined"
    for notification in (
        db.query(Notification)
        .filter(Notification.user_id == current_user.id, Notification.invitation_id == invitation.id)
        .all()
    ):
        notification.is_read = True
        notification.read_at = utc_now()
        notification.message = f'You {action_taken} the invitation to join "{project.name}"'
        notification.data = {**(notification.data or {}), "action_taken": action_taken}

    db.commit()

    publisher.to_user(current_user.id, SocketEvent.notifications_updated, {"invitation_id": invitation.id})
    if member_payload is not None:
        publisher.to_project_members(
            project.id,
            project.member_ids,
            SocketEvent.member_added,
            {"project_id": project.id, "member": member_payload},
        )

    logger.info(f"User {current_user.id} {action_taken} invitation {invitation.id} to project {project.id}")
    return {"message": f"Invitation {action_taken} successfully", "status": invitation.status.value}


# ============== Members ==============

@router.put("/{project_id}/members/{member_id}/role", response_model=schemas.MemberResponse)
def change_member_role(
    project_id: int,
    member_id: int,
    payload: schemas.RoleUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    project = require_project_permission(current_user, project_id, ProjectRole.admin, db)
    member = _get_member(db, project.id, member_id)

    if member.user_id == project.creator_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot change the role of the project creator"
        )

    old_role = member.role
    member.role = payload.role
    if member.user_id != current_user.id and old_role != payload.role:
        notify(
            db,
            member.user_id,
            NotificationType.role_changed,
            "Role Updated",
            f'Your role in "{project.name}" has been changed from {old_role.value} to {payload.role.value}',
            publisher=publisher,
            project_id=project.id,
            data={"old_role": old_role.value, "new_role": payload.role.value},
        )
    db.commit()
    db.refresh(member)

    publisher.to_project_members(
        project.id,
        project.member_ids,
        SocketEvent.role_changed,
        {"project_id": project.id, "member_id": member.id, "user_id": member.user_id, "role": member.role.value},
    )
    logger.info(f"Member {member.id} of project {project.id}: {old_role.value} -> {payload.role.value}")
    return member


@router.delete("/{project_id}/members/{member_id}")
def remove_member(
    project_id: int,
    member_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Remove a member. Any member may leave; removing others requires admin."""
    project = require_project_permission(current_user, project_id, ProjectRole.viewer, db)
    member = _get_member(db, project.id, member_id)

    removing_self = member.user_id == current_user.id
    if not removing_self and not can(get_member_role(current_user, project.id, db), "remove_members"):
        logger.info(f"User {current_user.id} tried to remove member {member_id} without admin role")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only remove yourself from the project, or be an admin to remove others",
        )

    if member.user_id == project.creator_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot remove the project creator")

    removed_user = member.user
    recipients = list(project.member_ids)

    notify(
        db,
        removed_user.id,
        NotificationType.member_removed,
        "Left Project" if removing_self else "Removed from Project",
        f'You have left the project "{project.name}"'
        if removing_self
        else f'You have been removed from the project "{project.name}" by {current_user.full_name}',
        publisher=publisher,
        project_id=project.id,
    )
    notify_many(
        db,
        recipients,
        NotificationType.member_removed,
        "Team Member Update",
        f'{removed_user.full_name} has left the project "{project.name}"'
        if removing_self
        else f'{removed_user.full_name} has been removed from the project "{project.name}" by {current_user.full_name}',
        publisher=publisher,
        exclude=[removed_user.id, current_user.id],
        project_id=project.id,
        data={"user_id": removed_user.id, "removed_by": current_user.id},
    )
    record_activity(
        db,
        project.id,
        current_user.id,
        ActivityType.member_removed,
        "left the project" if removing_self else "removed a member",
        target_title=removed_user.full_name,
        target_id=removed_user.id,
    )

    db.query(Bookmark).filter(
        Bookmark.project_id == project.id, Bookmark.user_id == removed_user.id
    ).delete(synchronize_session=False)
    db.delete(member)
    db.commit()

    publisher.to_project_members(
        project.id,
        recipients,
        SocketEvent.member_removed,
        {"project_id": project.id, "member_id": member_id, "user_id": removed_user.id},
    )
    logger.info(f"User {removed_user.id} removed from project {project.id} by {current_user.id}")
    return {"message": "Left project successfully" if removing_self else "Member removed successfully"}


# ============== Archive / delete ==============

@router.post("/{project_id}/archive", response_model=schemas.ProjectResponse)
def archive_project(
    project_id: int,
    payload: Optional[schemas.ArchiveRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """Archive the project; pending invitations stop being valid."""
    project = require_project_permission(current_user, project_id, ProjectRole.admin, db)
    if project.is_archived:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Project is already archived")

    project.is_archived = True
    project.archived_at = utc_now()
    project.archived_by_id = current_user.id
    invalidated = _invalidate_pending_invitations(db, project)

    if payload is None or payload.notify_members:
        notify_many(
            db,
            project.member_ids,
            NotificationType.project_archived,
            "Project Archived",
            f'The project "{project.name}" has been archived by {current_user.full_name}',
            publisher=publisher,
            exclude=[current_user.id],
            project_id=project.id,
        )
    db.commit()
    db.refresh(project)

    publisher.to_project_members(
        project.id, project.member_ids, SocketEvent.project_updated, {"project": _project_payload(project)}
    )
    logger.info(f"Project {project.id} archived by {current_user.id} ({invalidated} invitations invalidated)")
    return project


@router.post("/{project_id}/unarchive", response_model=schemas.ProjectResponse)
def unarchive_project(
    project_id: int,
    payload: Optional[schemas.ArchiveRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    project = require_project_permission(current_user, project_id, ProjectRole.admin, db)
    if not project.is_archived:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Project is not archived")

    project.is_archived = False
    project.archived_at = None
    project.archived_by_id = None

    if payload is None or payload.notify_members:
        notify_many(
            db,
            project.member_ids,
            NotificationType.project_unarchived,
            "Project Unarchived",
            f'The project "{project.name}" has been unarchived by {current_user.full_name}',
            publisher=publisher,
            exclude=[current_user.id],
            project_id=project.id,
        )
    db.commit()
    db.refresh(project)

    publisher.to_project_members(
        project.id, project.member_ids, SocketEvent.project_updated, {"project": _project_payload(project)}
    )
    logger.info(f"Project {project.id} unarchived by {current_user.id}")
    return project


@router.delete("/{project_id}")
def delete_project(
    project_id: int,
    payload: schemas.ProjectDeleteRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """
    Permanently delete a project with its tasks, notes, bookmarks and activities.

    The caller confirms with the exact project name and their password.
    Notifications about the project are kept.
    """
    project = require_project_permission(current_user, project_id, ProjectRole.admin, db)

    if payload.project_name != project.name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Project name does not match")
    if not verify_password(payload.password, current_user.password_hash):
        logger.info(f"Project {project.id} delete refused: wrong password for user {current_user.id}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Incorrect password")

    member_ids = list(project.member_ids)
    project_name = project.name
    _invalidate_pending_invitations(db, project)

    if payload.notify_members:
        notify_many(
            db,
            member_ids,
            NotificationType.project_deleted,
            "Project Deleted",
            f'The project "{project_name}" has been deleted by {current_user.full_name}',
            publisher=publisher,
            exclude=[current_user.id],
            project_id=project.id,
            data={"project_name": project_name},
        )

    db.delete(project)
    db.commit()

    publisher.to_project_members(
        project_id, member_ids, SocketEvent.project_deleted, {"project_id": project_id, "project_name": project_name}
    )
    logger.info(f"Project {project_id} '{project_name}' deleted by user {current_user.id}")
    return {"message": "Project deleted successfully"}


# ============== Read-only project views ==============

@router.get("/{project_id}/tasks", response_model=List[schemas.TaskLite])
def list_project_tasks(
    project_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """Lightweight task list used when referencing tasks from notes."""
    require_project_permission(current_user, project_id, ProjectRole.viewer, db)
    return (
        db.query(Task)
        .filter(Task.project_id == project_id, Task.is_archived == False)  # noqa: E712
        .order_by(Task.column, Task.position)
        .all()
    )


@router.get("/{project_id}/activity", response_model=List[schemas.ActivityResponse])
def list_project_activity(
    project_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    require_project_permission(current_user, project_id, ProjectRole.viewer, db)
    return (
        db.query(Activity)
        .filter(Activity.project_id == project_id)
        .order_by(Activity.created_at.desc(), Activity.id.desc())
        .limit(ACTIVITY_RETENTION_COUNT)
        .all()
    )
