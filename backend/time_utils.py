"""
Time utilities for ProjectHub.

All timestamps are produced here so stored values, retention windows and
overdue checks agree on what "now" means.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC time.

    Returns:
        timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to naive datetimes.

    SQLite drops tzinfo on the way back from the database, so values read from
    it must be normalised before comparing them with utc_now().
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def retention_cutoff(days: int) -> datetime:
    """Oldest creation time still inside a retention window of `days` days."""
    return utc_now() - timedelta(days=days)


def is_overdue(due_date: Optional[datetime], column: str) -> bool:
    """
    Check if a task is overdue.

    A task is overdue if it has a due date in the past and has not reached
    the 'done' column.
    """
    if not due_date or column == "done":
        return False
    return as_utc(due_date) < utc_now()
