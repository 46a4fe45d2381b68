"""
Role model for global and project-level roles.

Users carry two independent role axes:
- a global role (staff, manager, admin, hr) that applies across the organization
- a project role (creator, manager, collaborator) held per project membership

Hierarchy and division only matter for deciding whose data a manager may see.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from errors import ValidationFailed

logger = logging.getLogger(__name__)


class GlobalRole(str, Enum):
    STAFF = "staff"
    MANAGER = "manager"
    ADMIN = "admin"
    HR = "hr"


class ProjectRole(str, Enum):
    CREATOR = "creator"
    MANAGER = "manager"
    COLLABORATOR = "collaborator"


@dataclass(frozen=True)
class UserProfile:
    """Caller identity consumed by permission checks."""

    user_id: int
    global_role: GlobalRole = GlobalRole.STAFF
    hierarchy: int = 1
    division: Optional[str] = None
    department: Optional[str] = None

    @classmethod
    def from_user(cls, user: Any) -> "UserProfile":
        """Build a profile from any user record (entity, ORM row or dict)."""
        if isinstance(user, dict):
            get = user.get
        else:
            def get(name, default=None):
                return getattr(user, name, default)

        hierarchy = get("hierarchy", 1)
        try:
            hierarchy = int(hierarchy) if hierarchy is not None else 1
        except (TypeError, ValueError):
            hierarchy = 1

        return cls(
            user_id=get("id") if get("id") is not None else get("user_id"),
            global_role=parse_global_role(get("role", None) or get("global_role", None)),
            hierarchy=hierarchy,
            division=get("division"),
            department=get("department"),
        )

    @property
    def is_admin(self) -> bool:
        return self.global_role == GlobalRole.ADMIN


def parse_global_role(value: Any) -> GlobalRole:
    """
    Normalize a stored global role.

    Unknown or missing roles fall back to staff, the least privileged role.
    """
    if isinstance(value, GlobalRole):
        return value
    if isinstance(value, str):
        try:
            return GlobalRole(value.strip().lower())
        except ValueError:
            pass
    if value is not None:
        logger.debug(f"Unknown global role {value!r}, treating as staff")
    return GlobalRole.STAFF


def parse_project_role(value: Any) -> ProjectRole:
    """
    Normalize a project role.

    Raises:
        ValidationFailed: if the value is not creator, manager or collaborator
    """
    if isinstance(value, ProjectRole):
        return value
    if isinstance(value, str):
        try:
            return ProjectRole(value.strip().lower())
        except ValueError:
            pass
    allowed = ", ".join(role.value for role in ProjectRole)
    raise ValidationFailed(f"Invalid role. Must be one of: {allowed}")


def is_project_admin_role(project_role: Optional[ProjectRole]) -> bool:
    """Creators and project managers administer a project."""
    return project_role in (ProjectRole.CREATOR, ProjectRole.MANAGER)


def can_view_user_data(viewer: UserProfile, target: UserProfile) -> bool:
    """
    Decide whether viewer may see target's data.

    - admins see everyone
    - everyone sees themselves
    - a manager sees users in the same division with a lower hierarchy level
    """
    if viewer.global_role == GlobalRole.ADMIN:
        return True
    if viewer.user_id == target.user_id:
        return True
    if viewer.global_role == GlobalRole.MANAGER:
        return (
            viewer.division is not None
            and viewer.division == target.division
            and viewer.hierarchy > target.hierarchy
        )
    return False
