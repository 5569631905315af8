"""
Project notes, per-user bookmarks and the note activity feed.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import case
from sqlalchemy.orm import Session

import schemas
from config import ACTIVITY_RETENTION_COUNT
from database import get_db
from models import (
    NOTE_ACTIVITY_TYPES,
    Activity,
    ActivityType,
    Bookmark,
    Note,
    NoteType,
    NotificationType,
    Project,
    ProjectRole,
    Task,
    User,
)
from auth.dependencies import get_current_user
from auth.permissions import can, get_member_role, require_project_permission
from realtime.events import EventPublisher, SocketEvent, get_publisher
from services.activity import record_activity, trim_project_activities
from services.notifications import notify_many

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects/{project_id}/notes", tags=["notes"])

# Note types that every member hears about
BROADCAST_NOTE_TYPES = (NoteType.important, NoteType.reminder)


def _get_note(db: Session, project_id: int, note_id: int) -> Note:
    note = db.query(Note).filter(Note.id == note_id, Note.project_id == project_id).first()
    if note is None:
        logger.info(f"Note {note_id} not found in project {project_id}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Note not found")
    return note


def _resolve_tagged_users(db: Session, project: Project, user_ids: List[int], author_id: int) -> List[User]:
    """Members to tag; the author is dropped silently, non-members are rejected."""
    wanted = [user_id for user_id in dict.fromkeys(user_ids) if user_id != author_id]
    if not wanted:
        return []
    if set(wanted) - set(project.member_ids):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Tagged users must be members of the project"
        )
    return db.query(User).filter(User.id.in_(wanted)).all()


def _resolve_referenced_tasks(db: Session, project: Project, task_ids: List[int]) -> List[Task]:
    wanted = list(dict.fromkeys(task_ids))
    if not wanted:
        return []
    tasks = db.query(Task).filter(Task.id.in_(wanted), Task.project_id == project.id).all()
    if len(tasks) != len(wanted):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Referenced tasks must belong to this project"
        )
    return tasks


def _bookmarked_ids(db: Session, user: User, project_id: int) -> set:
    rows = db.query(Bookmark.note_id).filter(Bookmark.user_id == user.id, Bookmark.project_id == project_id).all()
    return {row.note_id for row in rows}


def _note_response(note: Note, bookmarked: bool) -> schemas.NoteResponse:
    return schemas.NoteResponse.model_validate(note).model_copy(update={"is_bookmarked": bookmarked})


def _notify_tagged(db, project, note, user_ids, actor, publisher) -> None:
    notify_many(
        db,
        user_ids,
        NotificationType.note_tagged,
        "Tagged in Note",
        f'You have been tagged by {actor.full_name} in a note "{note.title}" in project "{project.name}"',
        publisher=publisher,
        exclude=[actor.id],
        project_id=project.id,
        data={"note_id": note.id},
    )


def _publish_note_event(publisher: EventPublisher, project: Project, event: SocketEvent, body: dict) -> None:
    publisher.to_project_members(project.id, project.member_ids, event, {"project_id": project.id, **body})


@router.get("", response_model=List[schemas.NoteResponse])
def list_notes(
    project_id: int,
    archived: bool = False,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Notes of the project: pinned first, then important, then most recently updated."""
    require_project_permission(current_user, project_id, ProjectRole.viewer, db)

    notes = (
        db.query(Note)
        .filter(Note.project_id == project_id, Note.is_archived == archived)
        .order_by(
            Note.is_pinned.desc(),
            case((Note.type == NoteType.important, 1), else_=0).desc(),
            Note.updated_at.desc(),
            Note.id.desc(),
        )
        .all()
    )
    bookmarked = _bookmarked_ids(db, current_user, project_id)
    return [_note_response(note, note.id in bookmarked) for note in notes]


@router.get("/bookmarks", response_model=List[schemas.NoteResponse])
def list_bookmarked_notes(
    project_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    require_project_permission(current_user, project_id, ProjectRole.viewer, db)
    notes = (
        db.query(Note)
        .join(Bookmark, Bookmark.note_id == Note.id)
        .filter(Bookmark.user_id == current_user.id, Bookmark.project_id == project_id)
        .order_by(Bookmark.created_at.desc(), Bookmark.id.desc())
        .all()
    )
    return [_note_response(note, True) for note in notes]


@router.get("/activity", response_model=List[schemas.ActivityResponse])
def list_note_activity(
    project_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    """Most recent note activities; older ones beyond the retention count are pruned."""
    require_project_permission(current_user, project_id, ProjectRole.viewer, db)

    pruned = trim_project_activities(db, project_id, keep=ACTIVITY_RETENTION_COUNT, types=NOTE_ACTIVITY_TYPES)
    if pruned:
        db.commit()

    return (
        db.query(Activity)
        .filter(Activity.project_id == project_id, Activity.type.in_(NOTE_ACTIVITY_TYPES))
        .order_by(Activity.created_at.desc(), Activity.id.desc())
        .limit(ACTIVITY_RETENTION_COUNT)
        .all()
    )


@router.post("", response_model=schemas.NoteResponse, status_code=status.HTTP_201_CREATED)
def create_note(
    project_id: int,
    payload: schemas.NoteCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    project = require_project_permission(current_user, project_id, ProjectRole.editor, db)

    tagged = _resolve_tagged_users(db, project, payload.tagged_users, current_user.id)
    referenced = _resolve_referenced_tasks(db, project, payload.referenced_tasks)

    note = Note(
        title=payload.title,
        content=payload.content,
        project_id=project.id,
        type=payload.type,
        created_by_id=current_user.id,
    )
    note.tagged_users = tagged
    note.referenced_tasks = referenced
    db.add(note)
    db.flush()

    _notify_tagged(db, project, note, [user.id for user in tagged], current_user, publisher)
    if note.type in BROADCAST_NOTE_TYPES:
        notify_many(
            db,
            project.member_ids,
            NotificationType.note_created,
            "New Note Created",
            f'A(n) {note.type.value} note "{note.title}" has been created by {current_user.full_name} '
            f'in project "{project.name}"',
            publisher=publisher,
            exclude=[current_user.id],
            project_id=project.id,
            data={"note_id": note.id, "note_type": note.type.value},
        )
    record_activity(
        db, project.id, current_user.id, ActivityType.note_created, "created a note",
        target_title=note.title, target_id=note.id, metadata={"note_type": note.type.value},
    )
    db.commit()
    db.refresh(note)

    response = _note_response(note, False)
    _publish_note_event(publisher, project, SocketEvent.note_created, {"note": response.model_dump(mode="json")})
    logger.info(f"Note {note.id} ({note.type.value}) created in project {project.id}")
    return response


@router.put("/{note_id}", response_model=schemas.NoteResponse)
def update_note(
    project_id: int,
    note_id: int,
    payload: schemas.NoteUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """The author or any editor/admin may edit a note."""
    project = require_project_permission(current_user, project_id, ProjectRole.viewer, db)
    note = _get_note(db, project.id, note_id)

    is_author = note.created_by_id == current_user.id
    if not is_author and not can(get_member_role(current_user, project.id, db), "edit_notes"):
        logger.info(f"User {current_user.id} may not edit note {note.id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Only the author or an editor can edit this note"
        )

    updates = payload.model_dump(exclude_unset=True)
    old_type = note.type

    if updates.get("title") is not None:
        note.title = updates["title"]
    if updates.get("content") is not None:
        note.content = updates["content"]
    if updates.get("type") is not None:
        note.type = updates["type"]
    if updates.get("referenced_tasks") is not None:
        note.referenced_tasks = _resolve_referenced_tasks(db, project, updates["referenced_tasks"])

    newly_tagged: List[int] = []
    if updates.get("tagged_users") is not None:
        previous = {user.id for user in note.tagged_users}
        note.tagged_users = _resolve_tagged_users(db, project, updates["tagged_users"], note.created_by_id)
        newly_tagged = [user.id for user in note.tagged_users if user.id not in previous]

    _notify_tagged(db, project, note, newly_tagged, current_user, publisher)
    if note.type != old_type and note.type in BROADCAST_NOTE_TYPES:
        label = "important" if note.type == NoteType.important else "a reminder"
        notify_many(
            db,
            project.member_ids,
            NotificationType.note_created,
            "Note Updated",
            f'A note "{note.title}" has been marked as {label} by {current_user.full_name} '
            f'in project "{project.name}"',
            publisher=publisher,
            exclude=[current_user.id],
            project_id=project.id,
            data={"note_id": note.id, "note_type": note.type.value},
        )
    record_activity(
        db, project.id, current_user.id, ActivityType.note_updated, "updated a note",
        target_title=note.title, target_id=note.id, metadata={"fields": sorted(updates.keys())},
    )
    db.commit()
    db.refresh(note)

    response = _note_response(note, note.id in _bookmarked_ids(db, current_user, project.id))
    _publish_note_event(publisher, project, SocketEvent.note_updated, {"note": response.model_dump(mode="json")})
    logger.info(f"Note {note.id} updated: {sorted(updates.keys())}")
    return response


@router.delete("/{note_id}")
def delete_note(
    project_id: int,
    note_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    """The author or an admin may delete a note; its bookmarks go with it."""
    project = require_project_permission(current_user, project_id, ProjectRole.viewer, db)
    note = _get_note(db, project.id, note_id)

    is_author = note.created_by_id == current_user.id
    if not is_author and not can(get_member_role(current_user, project.id, db), "delete_notes"):
        logger.info(f"User {current_user.id} may not delete note {note.id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Only the author or an admin can delete this note"
        )

    title = note.title
    db.delete(note)
    record_activity(
        db, project.id, current_user.id, ActivityType.note_deleted, "deleted a note",
        target_title=title, target_id=note_id,
    )
    db.commit()

    _publish_note_event(publisher, project, SocketEvent.note_deleted, {"note_id": note_id})
    logger.info(f"Note {note_id} deleted from project {project.id} by user {current_user.id}")
    return {"message": "Note deleted successfully"}


def _set_note_flags(
    db: Session,
    project_id: int,
    note_id: int,
    current_user: User,
    publisher: EventPublisher,
    pinned: Optional[bool] = None,
    archived: Optional[bool] = None,
    toggle_pin: bool = False,
) -> schemas.NoteResponse:
    project = require_project_permission(current_user, project_id, ProjectRole.editor, db)
    note = _get_note(db, project.id, note_id)

    if toggle_pin:
        note.is_pinned = not note.is_pinned
    if pinned is not None:
        note.is_pinned = pinned
    if archived is not None:
        note.is_archived = archived
    db.commit()
    db.refresh(note)

    response = _note_response(note, note.id in _bookmarked_ids(db, current_user, project.id))
    _publish_note_event(publisher, project, SocketEvent.note_updated, {"note": response.model_dump(mode="json")})
    logger.debug(f"Note {note.id} flags: pinned={note.is_pinned} archived={note.is_archived}")
    return response


@router.put("/{note_id}/pin", response_model=schemas.NoteResponse)
def toggle_pin(
    project_id: int,
    note_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    return _set_note_flags(db, project_id, note_id, current_user, publisher, toggle_pin=True)


@router.put("/{note_id}/archive", response_model=schemas.NoteResponse)
def archive_note(
    project_id: int,
    note_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    # Archived notes are never pinned
    return _set_note_flags(db, project_id, note_id, current_user, publisher, pinned=False, archived=True)


@router.put("/{note_id}/restore", response_model=schemas.NoteResponse)
def restore_note(
    project_id: int,
    note_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    return _set_note_flags(db, project_id, note_id, current_user, publisher, archived=False)


@router.post("/{note_id}/bookmark")
def set_bookmark(
    project_id: int,
    note_id: int,
    payload: schemas.BookmarkRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Idempotently bookmark or un-bookmark a note for the caller."""
    project = require_project_permission(current_user, project_id, ProjectRole.viewer, db)
    note = _get_note(db, project.id, note_id)

    existing = db.query(Bookmark).filter(Bookmark.user_id == current_user.id, Bookmark.note_id == note.id).first()
    if payload.bookmark and existing is None:
        db.add(Bookmark(user_id=current_user.id, note_id=note.id, project_id=project.id))
        db.commit()
    elif not payload.bookmark and existing is not None:
        db.delete(existing)
        db.commit()

    logger.debug(f"User {current_user.id} bookmark on note {note.id}: {payload.bookmark}")
    return {
        "message": "Note bookmarked" if payload.bookmark else "Bookmark removed",
        "is_bookmarked": payload.bookmark,
    }
