"""
Notification inbox endpoints.
"""

import logging
import math

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

import schemas
from config import NOTIFICATION_RETENTION_DAYS
from database import get_db
from models import Notification, User
from auth.dependencies import get_current_user
from realtime.events import EventPublisher, SocketEvent, get_publisher
from services.notifications import cleanup_old_notifications
from time_utils import retention_cutoff, utc_now

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


def _unread_count(db: Session, user: User) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read == False)  # noqa: E712
        .count()
    )


def _get_notification(db: Session, user: User, notification_id: int) -> Notification:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user.id)
        .first()
    )
    if notification is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return notification


def _publish_inbox_changed(publisher: EventPublisher, db: Session, user: User) -> None:
    publisher.to_user(user.id, SocketEvent.notifications_updated, {"unread_count": _unread_count(db, user)})


@router.get("", response_model=schemas.NotificationList)
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    unread_only: bool = False,
    last_7_days: bool = False,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Paginated inbox, newest first.

    Expired notifications of the caller are purged first. With `last_7_days`
    the whole retention window is returned on a single page.
    """
    cleanup_old_notifications(db, user_id=current_user.id)

    base = db.query(Notification).filter(Notification.user_id == current_user.id)
    window_start = retention_cutoff(NOTIFICATION_RETENTION_DAYS)
    unread_count = _unread_count(db, current_user)
    last_7_days_count = base.filter(Notification.created_at >= window_start).count()

    query = base
    if unread_only:
        query = query.filter(Notification.is_read == False)  # noqa: E712
    query = query.order_by(Notification.created_at.desc(), Notification.id.desc())

    if last_7_days:
        notifications = query.filter(Notification.created_at >= window_start).all()
        total = len(notifications)
        current_page, pages = 1, 1
    else:
        total = query.count()
        notifications = query.offset((page - 1) * limit).limit(limit).all()
        current_page, pages = page, math.ceil(total / limit)

    logger.debug(f"User {current_user.id} notifications page {current_page}/{pages} ({total} total)")
    return {
        "notifications": notifications,
        "pagination": {
            "current": current_page,
            "pages": pages,
            "total": total,
            "unread_count": unread_count,
            "last_7_days_count": last_7_days_count,
        },
    }


@router.get("/unread-count", response_model=schemas.UnreadCount)
def get_unread_count(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"unread_count": _unread_count(db, current_user)}


@router.put("/mark-all-read", response_model=schemas.Message)
def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == current_user.id, Notification.is_read == False)  # noqa: E712
        .update({Notification.is_read: True, Notification.read_at: utc_now()}, synchronize_session=False)
    )
    db.commit()

    _publish_inbox_changed(publisher, db, current_user)
    logger.info(f"User {current_user.id} marked {updated} notifications as read")
    return {"message": "All notifications marked as read"}


@router.put("/{notification_id}/read", response_model=schemas.NotificationResponse)
def mark_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    notification = _get_notification(db, current_user, notification_id)
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utc_now()
        db.commit()
        db.refresh(notification)

    _publish_inbox_changed(publisher, db, current_user)
    return notification


@router.delete("", response_model=schemas.Message)
def delete_all_notifications(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    deleted = (
        db.query(Notification)
        .filter(Notification.user_id == current_user.id)
        .delete(synchronize_session=False)
    )
    db.commit()

    _publish_inbox_changed(publisher, db, current_user)
    logger.info(f"User {current_user.id} deleted all {deleted} notifications")
    return {"message": "All notifications deleted"}


@router.delete("/{notification_id}", response_model=schemas.Message)
def delete_notification(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    publisher: EventPublisher = Depends(get_publisher),
):
    notification = _get_notification(db, current_user, notification_id)
    db.delete(notification)
    db.commit()

    _publish_inbox_changed(publisher, db, current_user)
    return {"message": "Notification deleted"}
