"""
Periodic maintenance.

Runs once at startup and then every CLEANUP_INTERVAL_HOURS:
- notifications older than NOTIFICATION_RETENTION_DAYS are deleted
- each project keeps only its ACTIVITY_RETENTION_COUNT most recent activities
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.orm import Session

from config import ACTIVITY_RETENTION_COUNT, CLEANUP_INTERVAL_HOURS, NOTIFICATION_RETENTION_DAYS
from database import SessionLocal
from models import Project
from services.activity import trim_project_activities
from services.notifications import cleanup_old_notifications

logger = logging.getLogger(__name__)

_cleanup_task: Optional[asyncio.Task] = None


def cleanup_old_activities(db: Session, keep: int = ACTIVITY_RETENTION_COUNT) -> int:
    total_deleted = 0
    for (project_id,) in db.query(Project.id).all():
        total_deleted += trim_project_activities(db, project_id, keep=keep)
    db.commit()
    if total_deleted:
        logger.info(f"🧹 Cleaned up {total_deleted} old activities (keeping {keep} most recent per project)")
    return total_deleted


def run_cleanup(db: Session) -> dict:
    """Run every maintenance job once and return the deleted row counts."""
    return {
        "notifications": cleanup_old_notifications(db, days=NOTIFICATION_RETENTION_DAYS),
        "activities": cleanup_old_activities(db),
    }


def _run_cleanup_with_session() -> dict:
    db = SessionLocal()
    try:
        return run_cleanup(db)
    finally:
        db.close()


async def cleanup_loop(interval_hours: int = CLEANUP_INTERVAL_HOURS) -> None:
    """Run maintenance now and then every `interval_hours` until cancelled."""
    while True:
        try:
            counts = await asyncio.to_thread(_run_cleanup_with_session)
            logger.debug(f"Cleanup pass finished: {counts}")
        except Exception as e:
            # Keep the scheduler alive; the next pass retries
            logger.error(f"❌ Cleanup pass failed: {e}")
        await asyncio.sleep(interval_hours * 60 * 60)


def start_cleanup_scheduler() -> asyncio.Task:
    global _cleanup_task
    if _cleanup_task is None or _cleanup_task.done():
        _cleanup_task = asyncio.create_task(cleanup_loop())
        logger.info(f"Cleanup scheduler started (every {CLEANUP_INTERVAL_HOURS}h)")
    return _cleanup_task


async def stop_cleanup_scheduler() -> None:
    global _cleanup_task
    if _cleanup_task is None:
        return
    _cleanup_task.cancel()
    try:
        await _cleanup_task
    except asyncio.CancelledError:
        pass
    _cleanup_task = None
    logger.info("Cleanup scheduler stopped")
