"""
Per-assignee time tracking aggregation.

Logged hours are stored per (task, user). Summaries add up every entry for a
key, so repeated entries for the same user are summed rather than overwritten.
Invalid values (NaN, infinity, negative, non-numeric) count as zero but the
entry's key still appears in the breakdown.
"""

import logging
import math
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from errors import ValidationFailed

logger = logging.getLogger(__name__)

MAX_ENTRY_HOURS = 10000

_KEY_ALIASES = {
    "user_id": ("user_id", "userId"),
    "project_id": ("project_id", "projectId"),
    "task_id": ("task_id", "taskId"),
}

_GROUP_NAMES = {
    "user_id": "per_assignee",
    "project_id": "per_project",
    "task_id": "per_task",
}


def coerce_hours(value: Any) -> float:
    """
    Convert a raw hours value into a non-negative number rounded to 2 decimals.

    Anything that is not a finite, non-negative number becomes 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, Decimal):
        value = float(value)
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return 0.0
    if not isinstance(value, (int, float)):
        return 0.0
    try:
        number = float(value)
    except OverflowError:
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return round(number, 2)


def normalize_logged_hours(value: Any) -> float:
    """
    Normalize hours submitted on the write path.

    Raises:
        ValidationFailed: if the value exceeds the per-entry maximum
    """
    hours = coerce_hours(value)
    if hours > MAX_ENTRY_HOURS:
        raise ValidationFailed(f"Hours spent cannot exceed {MAX_ENTRY_HOURS}")
    return hours


def _coerce_id(value: Any) -> Optional[int]:
    """Return value as an int id, or None when it is not a whole number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
    try:
        number = float(value) if not isinstance(value, int) else value
    except (TypeError, ValueError, OverflowError):
        return None
    if isinstance(number, float) and not number.is_integer():
        return None
    return int(number)


def _read(entry: Any, names: Iterable[str]) -> Any:
    for name in names:
        if isinstance(entry, dict):
            if name in entry:
                return entry[name]
        elif hasattr(entry, name):
            return getattr(entry, name)
    return None


def summarize_hours(entries: Iterable[Any], key: str = "user_id", include: Iterable[int] = ()) -> Dict[str, Any]:
    """
    Sum logged hours grouped by key.

    Args:
        entries: dicts or objects exposing the key and an hours value
        key: grouping key, user_id for task summaries or project_id for rollups
        include: ids that must appear in the breakdown even with no entries

    Returns:
        {"total_hours": float, "per_assignee": [{"user_id": id, "hours": float}, ...]}
        with the list named per_project / per_task for the other keys.

    Example:
        >>> summarize_hours([{"user_id": 1, "hours": "abc"}, {"user_id": 2, "hours": 5}])
        {'total_hours': 5.0, 'per_assignee': [{'user_id': 1, 'hours': 0.0}, {'user_id': 2, 'hours': 5.0}]}
    """
    if key not in _KEY_ALIASES:
        raise ValueError(f"Unsupported grouping key: {key}")
    aliases = _KEY_ALIASES[key]

    buckets: Dict[Any, float] = {}
    for raw in include:
        ident = _coerce_id(raw)
        if ident is not None:
            buckets.setdefault(ident, 0.0)

    skipped = 0
    for entry in entries:
        ident = _coerce_id(_read(entry, aliases))
        if ident is None:
            skipped += 1
            continue
        buckets[ident] = buckets.get(ident, 0.0) + coerce_hours(_read(entry, ("hours",)))

    if skipped:
        logger.debug(f"Skipped {skipped} hours entries without a usable {key}")

    # Sorted by id so responses are stable; consumers re-sort by display name
    breakdown: List[Dict[str, Any]] = [
        {key: ident, "hours": round(hours, 2)}
        for ident, hours in sorted(buckets.items(), key=lambda item: item[0])
    ]
    total = round(sum(item["hours"] for item in breakdown), 2)
    return {"total_hours": total, _GROUP_NAMES[key]: breakdown}
