"""
Time utilities for the Task Tracker application.

This module provides a single source of truth for time operations,
ensuring consistency across all endpoints and preventing clock drift issues.
"""

from datetime import datetime, timezone
from typing import Optional, Union

# Statuses that can never be overdue
TERMINAL_STATUSES = ("completed", "cancelled")


def utc_now() -> datetime:
    """
    Get current UTC time.
    Single source of truth for "now" throughout the application.

    Returns:
        timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_deadline(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse an ISO 8601 deadline into a timezone-aware datetime.

    Args:
        value: ISO 8601 string, datetime, or None/empty string

    Returns:
        Timezone-aware datetime, or None when no deadline is given

    Raises:
        ValueError: if the value is not a valid ISO 8601 date or datetime
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    if not isinstance(value, str):
        raise ValueError(f"Unsupported deadline value: {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_aware(datetime.fromisoformat(text))


def is_overdue(deadline: Optional[datetime], status: str) -> bool:
    """
    Check if a task is overdue.

    A task is overdue if it has a deadline in the past and is not
    completed or cancelled.

    Args:
        deadline: The task's deadline
        status: The task's status

    Returns:
        True if task is overdue, False otherwise
    """
    if not deadline or status in TERMINAL_STATUSES:
        return False
    return ensure_aware(deadline) < utc_now()
