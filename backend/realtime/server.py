"""
Socket.IO connection handlers for live board, note and notification updates.

Every connection authenticates with an access token in the Socket.IO auth
payload and joins its personal room (user_<id>). Clients join a project room
(project_<id>) while the project is open.

Database work runs in a worker thread so the event loop keeps serving pings
and HTTP requests.
"""

import asyncio
import logging
from typing import Any, Optional, Tuple

from fastapi import HTTPException
from socketio.exceptions import ConnectionRefusedError

from database import SessionLocal
from models import ProjectRole, User
from auth.dependencies import resolve_user_from_token
from auth.permissions import check_project_permission
from realtime.events import SocketEvent, emit_to_project, project_room, sio, user_room
from time_utils import utc_now

logger = logging.getLogger(__name__)

# Replaced in tests to point at the test database
session_factory = SessionLocal


def _parse_project_id(data: Any) -> Optional[int]:
    """Accept a bare id or {"project_id": id} from the client."""
    if isinstance(data, dict):
        data = data.get("project_id", data.get("projectId"))
    try:
        return int(data)
    except (TypeError, ValueError):
        return None


def _authenticate(token: str) -> Tuple[int, str]:
    """Resolve the token and mark the user online. Raises HTTPException on a bad token."""
    db = session_factory()
    try:
        user = resolve_user_from_token(token, db)
        user.is_online = True
        user.last_seen = utc_now()
        db.commit()
        return user.id, user.full_name
    finally:
        db.close()


def _set_offline(user_id: int) -> None:
    db = session_factory()
    try:
        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            return
        user.is_online = False
        user.last_seen = utc_now()
        db.commit()
    finally:
        db.close()


def _can_view_project(user_id: int, project_id: int) -> bool:
    db = session_factory()
    try:
        user = db.query(User).filter(User.id == user_id).first()
        return user is not None and check_project_permission(user, project_id, ProjectRole.viewer, db)
    finally:
        db.close()


@sio.event
async def connect(sid, environ, auth=None):
    """Authenticate the connection and join the user's personal room."""
    token = auth.get("token") if isinstance(auth, dict) else None
    if not token:
        logger.info(f"Socket.IO connection {sid} refused: no token provided")
        raise ConnectionRefusedError("Authentication error: No token provided")

    try:
        user_id, user_name = await asyncio.to_thread(_authenticate, token)
    except HTTPException as e:
        logger.info(f"Socket.IO connection {sid} refused: {e.detail}")
        raise ConnectionRefusedError(f"Authentication error: {e.detail}")

    await sio.save_session(sid, {"user_id": user_id, "user_name": user_name})
    await sio.enter_room(sid, user_room(user_id))
    logger.info(f"User {user_name} connected with socket {sid}")


@sio.event
async def disconnect(sid, reason=None):
    session = await sio.get_session(sid)
    user_id = session.get("user_id") if session else None
    if user_id is None:
        return
    await asyncio.to_thread(_set_offline, user_id)
    logger.info(f"User {session.get('user_name')} disconnected ({reason})")


@sio.event
async def join_project(sid, data):
    """Join project_<id> if the connected user is a member, otherwise emit "error"."""
    session = await sio.get_session(sid)
    project_id = _parse_project_id(data)
    if project_id is None:
        await sio.emit("error", {"message": "Invalid project id"}, to=sid)
        return

    allowed = await asyncio.to_thread(_can_view_project, session["user_id"], project_id)
    if not allowed:
        logger.info(f"User {session['user_id']} denied join to project room {project_id}")
        await sio.emit("error", {"message": "Project not found"}, to=sid)
        return

    await sio.enter_room(sid, project_room(project_id))
    logger.debug(f"User {session['user_name']} joined project {project_id}")


@sio.event
async def leave_project(sid, data):
    project_id = _parse_project_id(data)
    if project_id is None:
        return
    await sio.leave_room(sid, project_room(project_id))
    logger.debug(f"Socket {sid} left project {project_id}")


async def _relay_typing(sid, data, is_typing: bool) -> None:
    session = await sio.get_session(sid)
    project_id = _parse_project_id(data)
    if project_id is None:
        return
    await emit_to_project(
        project_id,
        SocketEvent.user_typing,
        {
            "project_id": project_id,
            "user_id": session["user_id"],
            "user_name": session["user_name"],
            "is_typing": is_typing,
        },
        skip_sid=sid,
    )


@sio.event
async def typing_start(sid, data):
    await _relay_typing(sid, data, True)


@sio.event
async def typing_stop(sid, data):
    await _relay_typing(sid, data, False)
