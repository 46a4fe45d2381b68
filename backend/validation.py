"""
Task invariants and list-parameter validation.

Every validator here is pure: no store access, deterministic given its inputs.
Validators return a ValidationResult; helpers that are only used internally
raise ValidationFailed directly.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from errors import ValidationFailed
from time_utils import parse_deadline

logger = logging.getLogger(__name__)

TASK_STATUSES = ("pending", "in_progress", "completed", "cancelled", "blocked")
PROJECT_STATUSES = ("active", "hold", "completed", "archived")

PRIORITY_MIN = 1
PRIORITY_MAX = 10
DEFAULT_PRIORITY = 5
LEGACY_PRIORITIES = {"low": 1, "medium": 5, "high": 10}

MIN_ASSIGNEES = 1
MAX_ASSIGNEES = 5

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20
MAX_LIMIT = 100

SORT_FIELDS = {
    "tasks": ("id", "title", "status", "priority", "created_at", "updated_at", "deadline"),
    "projects": ("id", "name", "status", "created_at", "updated_at"),
}
SORT_ORDERS = ("asc", "desc")

# Fields a task update may touch
TASK_UPDATE_FIELDS = (
    "title", "description", "priority", "status", "deadline",
    "assigned_to", "tags", "archived", "project_id",
)

PRIORITY_ERROR = "Priority must be an integer between 1 and 10"
STATUS_ERROR = f"Status must be one of: {', '.join(TASK_STATUSES)}"
DEADLINE_ERROR = "Invalid deadline format. Use ISO 8601 format"
TOO_FEW_ASSIGNEES = "A task must have at least one assignee."
TOO_MANY_ASSIGNEES = f"You can assign up to {MAX_ASSIGNEES} members."
INACTIVE_PROJECT = "Tasks can only be assigned to active projects."
ARCHIVED_PROJECT = "Project is archived and read-only."
PROJECT_IMMUTABLE = "Project assignment cannot be changed after creation."
TITLE_REQUIRED = "Title is required"
EMPTY_UPDATE = "At least one field to update is required"


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None) -> "ValidationResult":
        return cls(True, value)

    @classmethod
    def failure(cls, error: str) -> "ValidationResult":
        return cls(False, None, error)

    def unwrap(self) -> Any:
        """Return the normalized value or raise ValidationFailed."""
        if not self.ok:
            raise ValidationFailed(self.error)
        return self.value


def _attr(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


# ---------------------------------------------------------------------------
# Field normalizers
# ---------------------------------------------------------------------------

def normalize_priority(value: Any) -> ValidationResult:
    """
    Normalize a priority to an integer in [1, 10].

    Legacy strings low/medium/high map to 1/5/10. Integer strings and integral
    floats are accepted. None yields the default priority.
    """
    if value is None:
        return ValidationResult.success(DEFAULT_PRIORITY)
    if isinstance(value, bool):
        return ValidationResult.failure(PRIORITY_ERROR)

    number = None
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            number = int(value)
    elif isinstance(value, str):
        text = value.strip().lower()
        if text in LEGACY_PRIORITIES:
            number = LEGACY_PRIORITIES[text]
        else:
            try:
                number = int(text)
            except ValueError:
                number = None

    if number is None or number < PRIORITY_MIN or number > PRIORITY_MAX:
        return ValidationResult.failure(PRIORITY_ERROR)
    return ValidationResult.success(number)


def normalize_status(value: Any) -> ValidationResult:
    """Normalize a task status; None yields pending."""
    if value is None:
        return ValidationResult.success("pending")
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TASK_STATUSES:
            return ValidationResult.success(text)
    return ValidationResult.failure(STATUS_ERROR)


def normalize_project_status(value: Any) -> ValidationResult:
    if isinstance(value, str) and value.strip().lower() in PROJECT_STATUSES:
        return ValidationResult.success(value.strip().lower())
    return ValidationResult.failure(f"Status must be one of: {', '.join(PROJECT_STATUSES)}")


def normalize_assignees(values: Any) -> ValidationResult:
    """
    Normalize assignee ids into a de-duplicated list of positive integers.

    Accepts a list of ints or integer strings. Order of first appearance is kept.
    Bounds are checked separately by check_assignee_bounds.
    """
    if values is None:
        return ValidationResult.success([])
    if isinstance(values, (str, int)) and not isinstance(values, bool):
        values = [values]
    if not isinstance(values, (list, tuple, set)):
        return ValidationResult.failure("assigned_to must be a list of user ids")

    result: List[int] = []
    for raw in values:
        if isinstance(raw, bool):
            return ValidationResult.failure(f"Invalid assignee id: {raw!r}")
        if isinstance(raw, str):
            raw = raw.strip()
            if not raw:
                continue
        try:
            if isinstance(raw, float):
                if not (math.isfinite(raw) and raw.is_integer()):
                    return ValidationResult.failure(f"Invalid assignee id: {raw!r}")
                user_id = int(raw)
            else:
                user_id = int(raw)
        except (TypeError, ValueError):
            return ValidationResult.failure(f"Invalid assignee id: {raw!r}")
        if user_id <= 0:
            return ValidationResult.failure(f"Invalid assignee id: {raw!r}")
        if user_id not in result:
            result.append(user_id)
    return ValidationResult.success(result)


def check_assignee_bounds(assignees: List[int]) -> ValidationResult:
    if len(assignees) < MIN_ASSIGNEES:
        return ValidationResult.failure(TOO_FEW_ASSIGNEES)
    if len(assignees) > MAX_ASSIGNEES:
        return ValidationResult.failure(TOO_MANY_ASSIGNEES)
    return ValidationResult.success(assignees)


def normalize_tags(value: Any) -> ValidationResult:
    """Accept a list or comma-separated string; trim, drop blanks, de-duplicate."""
    if value is None:
        return ValidationResult.success([])
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        return ValidationResult.failure("Tags must be a list or comma-separated string")
    tags: List[str] = []
    for tag in value:
        text = str(tag).strip()
        if text and text not in tags:
            tags.append(text)
    return ValidationResult.success(tags)


def normalize_deadline(value: Any) -> ValidationResult:
    try:
        return ValidationResult.success(parse_deadline(value))
    except (TypeError, ValueError):
        return ValidationResult.failure(DEADLINE_ERROR)


def _normalize_field(name: str, value: Any) -> ValidationResult:
    if name == "priority":
        return normalize_priority(value)
    if name == "status":
        return normalize_status(value)
    if name == "deadline":
        return normalize_deadline(value)
    if name == "tags":
        return normalize_tags(value)
    if name == "assigned_to":
        return normalize_assignees(value)
    if name == "title":
        title = value.strip() if isinstance(value, str) else ""
        if not title:
            return ValidationResult.failure(TITLE_REQUIRED)
        return ValidationResult.success(title)
    if name == "description":
        return ValidationResult.success("" if value is None else str(value).strip())
    if name == "archived":
        if not isinstance(value, bool):
            return ValidationResult.failure("archived must be a boolean")
        return ValidationResult.success(value)
    return ValidationResult.success(value)


# ---------------------------------------------------------------------------
# Task create / update
# ---------------------------------------------------------------------------

def validate_task_create(draft: Dict[str, Any], project: Any) -> ValidationResult:
    """
    Validate a new task against its project.

    Args:
        draft: Raw task fields (title, description, priority, status, deadline,
            assigned_to, tags, parent_id)
        project: The project the task will belong to

    Returns:
        ValidationResult whose value is the normalized draft
    """
    if _attr(project, "status") != "active":
        logger.info(f"Task create rejected: project {_attr(project, 'id')} is not active")
        return ValidationResult.failure(INACTIVE_PROJECT)

    normalized: Dict[str, Any] = {"project_id": _attr(project, "id")}
    for name in ("title", "description", "priority", "status", "deadline", "tags", "assigned_to"):
        result = _normalize_field(name, draft.get(name))
        if not result.ok:
            return result
        normalized[name] = result.value

    bounds = check_assignee_bounds(normalized["assigned_to"])
    if not bounds.ok:
        return bounds

    normalized["parent_id"] = draft.get("parent_id")
    return ValidationResult.success(normalized)


def validate_task_update(existing: Any, patch: Dict[str, Any], project: Any) -> ValidationResult:
    """
    Validate a partial task update.

    Only fields present in the patch are validated. Assignee bounds are applied
    to the resulting assignee set, so a patch without assigned_to still passes
    through untouched.

    Returns:
        ValidationResult whose value is the normalized patch (project_id removed)
    """
    if _attr(project, "status") == "archived":
        logger.info(f"Task update rejected: project {_attr(project, 'id')} is archived")
        return ValidationResult.failure(ARCHIVED_PROJECT)

    if "project_id" in patch and patch["project_id"] is not None:
        try:
            same_project = int(patch["project_id"]) == int(_attr(existing, "project_id"))
        except (TypeError, ValueError):
            same_project = False
        if not same_project:
            return ValidationResult.failure(PROJECT_IMMUTABLE)

    fields = [name for name in TASK_UPDATE_FIELDS if name in patch and name != "project_id"]
    if not fields:
        return ValidationResult.failure(EMPTY_UPDATE)

    normalized: Dict[str, Any] = {}
    for name in fields:
        value = patch[name]
        # None would silently reset these to their defaults
        if value is None and name == "priority":
            return ValidationResult.failure(PRIORITY_ERROR)
        if value is None and name == "status":
            return ValidationResult.failure(STATUS_ERROR)
        result = _normalize_field(name, value)
        if not result.ok:
            return result
        normalized[name] = result.value

    assignees = normalized.get("assigned_to", list(_attr(existing, "assigned_to") or []))
    bounds = check_assignee_bounds(assignees)
    if not bounds.ok:
        return bounds

    return ValidationResult.success(normalized)


# ---------------------------------------------------------------------------
# List parameters
# ---------------------------------------------------------------------------

def validate_sorting(entity: str, sort_by: Optional[str] = None, sort_order: Optional[str] = None) -> ValidationResult:
    """Validate sortBy/sortOrder against the entity's allow-list."""
    allowed = SORT_FIELDS[entity]
    sort_by = sort_by or "created_at"
    sort_order = (sort_order or "desc").lower()
    if sort_by not in allowed:
        return ValidationResult.failure(f"Invalid sortBy field. Must be one of: {', '.join(allowed)}")
    if sort_order not in SORT_ORDERS:
        return ValidationResult.failure("Invalid sortOrder. Must be 'asc' or 'desc'")
    return ValidationResult.success({"sort_by": sort_by, "sort_order": sort_order})


def _positive_int(value: Any, default: int) -> Optional[int]:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def validate_pagination(page: Any = None, limit: Any = None) -> ValidationResult:
    """Validate page/limit; limit is capped at 100."""
    page_number = _positive_int(page, DEFAULT_PAGE)
    if page_number is None:
        return ValidationResult.failure("Page must be a positive integer")
    page_size = _positive_int(limit, DEFAULT_LIMIT)
    if page_size is None:
        return ValidationResult.failure("Limit must be a positive integer")
    page_size = min(page_size, MAX_LIMIT)
    return ValidationResult.success({
        "page": page_number,
        "limit": page_size,
        "offset": (page_number - 1) * page_size,
    })


def _parse_bool(value: Any) -> Optional[bool]:
    if value is None or value == "":
        return False
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    return None


def validate_task_filters(
    status: Any = None, priority: Any = None, assigned_to: Any = None, archived: Any = None
) -> ValidationResult:
    """Validate optional list filters for project task listings."""
    filters: Dict[str, Any] = {}
    if status not in (None, ""):
        result = normalize_status(status)
        if not result.ok:
            return result
        filters["status"] = result.value
    if priority not in (None, ""):
        result = normalize_priority(priority)
        if not result.ok:
            return result
        filters["priority"] = result.value
    if assigned_to not in (None, ""):
        result = normalize_assignees(assigned_to)
        if not result.ok or len(result.value) != 1:
            return ValidationResult.failure("assignedTo must be a single user id")
        filters["assigned_to"] = result.value[0]
    archived_flag = _parse_bool(archived)
    if archived_flag is None:
        return ValidationResult.failure("archived must be true or false")
    filters["archived"] = archived_flag
    return ValidationResult.success(filters)


def require_fields(data: Dict[str, Any], names: Iterable[str], message: str) -> None:
    """Raise ValidationFailed unless every named field is a non-blank value."""
    for name in names:
        value = data.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationFailed(message)
