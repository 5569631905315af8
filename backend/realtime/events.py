"""
Socket.IO server instance and server-side broadcast helpers.

REST handlers never await Socket.IO directly. They get an EventPublisher via
`Depends(get_publisher)`, queue emits on it, and FastAPI runs the queued
coroutines as background tasks once the response has been produced (and the
database transaction committed). A failed emit is logged and dropped.

Connection handlers live in realtime/server.py.
"""

import enum
import logging
from typing import Any, Iterable, Optional

import socketio
from fastapi import BackgroundTasks
from fastapi.encoders import jsonable_encoder

from config import CORS_ORIGINS

logger = logging.getLogger(__name__)

sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=CORS_ORIGINS,
    logger=False,
    engineio_logger=False,
    ping_timeout=60,
    ping_interval=25,
)


def user_room(user_id: int) -> str:
    return f"user_{user_id}"


def project_room(project_id: int) -> str:
    return f"project_{project_id}"


class SocketEvent(str, enum.Enum):
    # Board
    task_created = "task-created"
    task_updated = "task-updated"
    task_deleted = "task-deleted"
    task_moved = "task-moved"
    task_comment_added = "task-comment-added"
    # Notes
    note_created = "note-created"
    note_updated = "note-updated"
    note_deleted = "note-deleted"
    # Membership
    member_added = "member_added"
    member_removed = "member_removed"
    role_changed = "role_changed"
    # Projects
    project_created = "project_created"
    project_updated = "project_updated"
    project_info_updated = "project_info_updated"
    project_deleted = "project_deleted"
    # Notifications
    notification_received = "notification_received"
    notifications_updated = "notifications_updated"
    # Social
    friends_updated = "friends_updated"
    friend_requests_updated = "friend_requests_updated"
    friend_request_received = "friend_request_received"
    # Presence
    user_typing = "user_typing"


def _event_name(event) -> str:
    return event.value if isinstance(event, SocketEvent) else str(event)


async def _emit(event, data: Any, rooms, skip_sid: Optional[str] = None) -> None:
    name = _event_name(event)
    try:
        await sio.emit(name, jsonable_encoder(data), room=rooms, skip_sid=skip_sid)
        logger.debug(f"Broadcasted {name} to {rooms}")
    except Exception as e:
        logger.error(f"Failed to broadcast {name} to {rooms}: {e}")


async def emit_to_user(user_id: int, event, data: Any) -> None:
    """Emit to every connection of one user (their personal room)."""
    await _emit(event, data, user_room(user_id))


async def emit_to_project(project_id: int, event, data: Any, skip_sid: Optional[str] = None) -> None:
    """Emit to clients that currently have the project open."""
    await _emit(event, data, project_room(project_id), skip_sid=skip_sid)


async def emit_to_project_members(project_id: int, member_ids: Iterable[int], event, data: Any) -> None:
    """
    Emit to the project room and to every member's personal room.

    Members on other pages (dashboard, notifications) still receive the event.
    Socket.IO delivers a multi-room emit once per connection, so clients in
    both rooms do not get duplicates.
    """
    rooms = [project_room(project_id)] + [user_room(member_id) for member_id in dict.fromkeys(member_ids)]
    await _emit(event, data, rooms)


class EventPublisher:
    """Queues broadcasts to run after the current request completes."""

    def __init__(self, background_tasks: BackgroundTasks):
        self._background_tasks = background_tasks

    def to_user(self, user_id: int, event, data: Any) -> None:
        self._background_tasks.add_task(emit_to_user, user_id, event, data)

    def to_users(self, user_ids: Iterable[int], event, data: Any) -> None:
        for user_id in dict.fromkeys(user_ids):
            self.to_user(user_id, event, data)

    def to_project_members(self, project_id: int, member_ids: Iterable[int], event, data: Any) -> None:
        self._background_tasks.add_task(emit_to_project_members, project_id, list(member_ids), event, data)


def get_publisher(background_tasks: BackgroundTasks) -> EventPublisher:
    return EventPublisher(background_tasks)
