"""
Notification storage and delivery.

A notification row is created inside the caller's transaction; the push to the
recipient's personal room is queued on the request's EventPublisher and only
happens once the response is sent.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

import schemas
from config import NOTIFICATION_RETENTION_DAYS
from models import Notification, NotificationType
from realtime.events import EventPublisher, SocketEvent
from time_utils import retention_cutoff

logger = logging.getLogger(__name__)


def notify(
    db: Session,
    user_id: int,
    type: NotificationType,
    title: str,
    message: str,
    publisher: Optional[EventPublisher] = None,
    project_id: Optional[int] = None,
    invitation_id: Optional[int] = None,
    data: Optional[dict] = None,
) -> Notification:
    """
    Store a notification for one user and queue its real-time push.

    The session is flushed (not committed) so the caller's commit covers it.
    """
    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        project_id=project_id,
        invitation_id=invitation_id,
        data=data or {},
        is_read=False,
    )
    db.add(notification)
    db.flush()

    if publisher is not None:
        payload = schemas.NotificationResponse.model_validate(notification).model_dump(mode="json")
        publisher.to_user(user_id, SocketEvent.notification_received, payload)

    logger.debug(f"Notification {type.value} queued for user {user_id}")
    return notification


def notify_many(
    db: Session,
    user_ids: Iterable[int],
    type: NotificationType,
    title: str,
    message: str,
    publisher: Optional[EventPublisher] = None,
    exclude: Iterable[int] = (),
    **kwargs,
) -> List[Notification]:
    """Notify each distinct user in `user_ids` except those in `exclude`."""
    skipped = set(exclude)
    created = []
    for user_id in dict.fromkeys(user_ids):
        if user_id in skipped:
            continue
        created.append(notify(db, user_id, type, title, message, publisher=publisher, **kwargs))
    return created


def invalidate_invitation_notifications(db: Session, invitation_ids: Iterable[int]) -> int:
    """Flag the notifications of dead invitations so the client hides their accept/decline buttons."""
    ids = list(invitation_ids)
    if not ids:
        return 0
    notifications = db.query(Notification).filter(Notification.invitation_id.in_(ids)).all()
    for notification in notifications:
        # Reassign so the JSON column is marked dirty
        notification.data = {**(notification.data or {}), "is_invalid": True}
    return len(notifications)


def cleanup_old_notifications(
    db: Session, user_id: Optional[int] = None, days: int = NOTIFICATION_RETENTION_DAYS
) -> int:
    """
    Delete notifications older than the retention window.

    Args:
        user_id: Restrict to one user's notifications; None cleans every user

    Returns:
        Number of deleted rows
    """
    query = db.query(Notification).filter(Notification.created_at < retention_cutoff(days))
    if user_id is not None:
        query = query.filter(Notification.user_id == user_id)
    deleted = query.delete(synchronize_session=False)
    db.commit()
    if deleted:
        logger.info(f"🧹 Cleaned up {deleted} notifications older than {days} days")
    return deleted
