"""Project activity feed: recording and retention."""

import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from config import ACTIVITY_RETENTION_COUNT
from models import Activity, ActivityType

logger = logging.getLogger(__name__)


def record_activity(
    db: Session,
    project_id: int,
    user_id: Optional[int],
    type: ActivityType,
    action: str,
    target_title: str,
    target_id: Optional[int] = None,
    metadata: Optional[dict] = None,
) -> Activity:
    """Add an activity row to the session; committed with the caller's transaction."""
    activity = Activity(
        project_id=project_id,
        user_id=user_id,
        type=type,
        action=action,
        target_id=target_id,
        target_title=target_title[:200],
        activity_metadata=metadata or {},
    )
    db.add(activity)
    logger.debug(f"Activity {type.value} recorded for project {project_id}")
    return activity


def trim_project_activities(
    db: Session,
    project_id: int,
    keep: int = ACTIVITY_RETENTION_COUNT,
    types: Optional[Iterable[ActivityType]] = None,
) -> int:
    """
    Delete all but the `keep` most recent activities of a project.

    Args:
        types: Only consider (and prune) activities of these types

    Returns:
        Number of deleted rows (not committed)
    """
    query = db.query(Activity.id).filter(Activity.project_id == project_id)
    if types is not None:
        query = query.filter(Activity.type.in_(list(types)))

    stale_ids = [
        row.id
        for row in query.order_by(Activity.created_at.desc(), Activity.id.desc()).offset(keep).all()
    ]
    if not stale_ids:
        return 0

    deleted = db.query(Activity).filter(Activity.id.in_(stale_ids)).delete(synchronize_session=False)
    logger.debug(f"Pruned {deleted} old activities from project {project_id}")
    return deleted
