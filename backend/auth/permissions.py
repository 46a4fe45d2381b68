"""
Project-level permission checking utilities.

This module decides whether a caller may perform an action on a project or task.
Evaluation is pure: the caller's profile and the resolved project membership are
passed in, and the service layer is responsible for fetching them from the store.

Rules (first match wins):
1. Global admin role allows everything
2. create_project needs the manager or admin global role
3. Callers without a membership in the target project are denied
4. Project creators may edit, archive and manage members
5. Project managers may edit and manage members (archiving is reserved)
6. Any member may create tasks; modifying a task needs assignee, manager or creator
7. Everything else is denied
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from auth.roles import (
    GlobalRole, ProjectRole, UserProfile, can_view_user_data, is_project_admin_role,
    parse_project_role,
)
from errors import PermissionDenied, ValidationFailed

logger = logging.getLogger(__name__)

INSUFFICIENT_ROLE = "insufficient role"
NOT_A_MEMBER = "not a project member"
INSUFFICIENT_PERMISSION = "insufficient permission"


class Action(str, Enum):
    CREATE_PROJECT = "create_project"
    EDIT_PROJECT = "edit_project"
    ADD_PROJECT_MEMBERS = "add_project_members"
    REMOVE_PROJECT_MEMBER = "remove_project_member"
    CREATE_TASK = "create_task"
    MODIFY_TASK = "modify_task"
    ARCHIVE_PROJECT = "archive_project"
    VIEW_PROJECT = "view_project"


CREATOR_ACTIONS = {
    Action.EDIT_PROJECT,
    Action.ARCHIVE_PROJECT,
    Action.ADD_PROJECT_MEMBERS,
    Action.REMOVE_PROJECT_MEMBER,
}

MANAGER_ACTIONS = {
    Action.EDIT_PROJECT,
    Action.ADD_PROJECT_MEMBERS,
    Action.REMOVE_PROJECT_MEMBER,
}


@dataclass
class ResourceContext:
    """
    Facts about the target resource resolved before evaluation.

    membership: the caller's membership row in the target project, or None
    task_assignee_ids: assignees of the target task (modify_task only)
    project_creator: profile of the project creator (view_project only)
    """

    membership: Optional[Any] = None
    task_assignee_ids: List[int] = field(default_factory=list)
    project_creator: Optional[UserProfile] = None

    @property
    def project_role(self) -> Optional[ProjectRole]:
        if self.membership is None:
            return None
        role = getattr(self.membership, "role", None)
        if role is None and isinstance(self.membership, dict):
            role = self.membership.get("role")
        return parse_project_role(role)


@dataclass(frozen=True)
class PermissionResult:
    allowed: bool
    reason: Optional[str] = None

    def raise_for_denial(self) -> None:
        """Raise PermissionDenied carrying the denial reason."""
        if not self.allowed:
            raise PermissionDenied(self.reason or INSUFFICIENT_PERMISSION)


ALLOW = PermissionResult(True)


def _deny(reason: str) -> PermissionResult:
    return PermissionResult(False, reason)


def evaluate_permission(
    action: Action, caller: UserProfile, context: Optional[ResourceContext] = None
) -> PermissionResult:
    """
    Evaluate whether caller may perform action on the resource described by context.

    Args:
        action: Action being attempted
        caller: Profile of the acting user
        context: Resolved membership and task facts (None means no membership)

    Returns:
        PermissionResult with allowed flag and a denial reason

    Example:
        >>> result = evaluate_permission(Action.EDIT_PROJECT, caller, ResourceContext(membership))
        >>> result.raise_for_denial()
    """
    action = Action(action)
    context = context or ResourceContext()
    logger.debug(
        f"Evaluating {action.value} for user {caller.user_id} "
        f"(global role: {caller.global_role.value})"
    )

    if caller.global_role == GlobalRole.ADMIN:
        logger.debug(f"User {caller.user_id} is admin, granting {action.value}")
        return ALLOW

    if action == Action.CREATE_PROJECT:
        if caller.global_role == GlobalRole.MANAGER:
            return ALLOW
        logger.info(f"User {caller.user_id} denied {action.value}: {INSUFFICIENT_ROLE}")
        return _deny(INSUFFICIENT_ROLE)

    if action == Action.VIEW_PROJECT:
        return _evaluate_view(caller, context)

    if context.membership is None:
        logger.info(f"User {caller.user_id} denied {action.value}: {NOT_A_MEMBER}")
        return _deny(NOT_A_MEMBER)

    try:
        project_role = context.project_role
    except ValidationFailed:
        logger.warning(
            f"User {caller.user_id} has an unrecognised project role, "
            f"denied {action.value}: {INSUFFICIENT_PERMISSION}"
        )
        return _deny(INSUFFICIENT_PERMISSION)

    if project_role == ProjectRole.CREATOR and action in CREATOR_ACTIONS:
        return ALLOW

    if project_role == ProjectRole.MANAGER and action in MANAGER_ACTIONS:
        return ALLOW

    if action == Action.CREATE_TASK:
        return ALLOW

    if action == Action.MODIFY_TASK:
        if caller.user_id in context.task_assignee_ids or is_project_admin_role(project_role):
            return ALLOW

    logger.info(
        f"User {caller.user_id} has role '{project_role.value}' in project, "
        f"denied {action.value}: {INSUFFICIENT_PERMISSION}"
    )
    return _deny(INSUFFICIENT_PERMISSION)


def _evaluate_view(caller: UserProfile, context: ResourceContext) -> PermissionResult:
    if caller.global_role == GlobalRole.HR:
        return ALLOW
    if context.membership is not None:
        return ALLOW
    if (
        caller.global_role == GlobalRole.MANAGER
        and context.project_creator is not None
        and can_view_user_data(caller, context.project_creator)
    ):
        logger.debug(
            f"Manager {caller.user_id} can view project created by "
            f"user {context.project_creator.user_id}"
        )
        return ALLOW
    logger.info(f"User {caller.user_id} cannot view project: {NOT_A_MEMBER}")
    return _deny(NOT_A_MEMBER)


def filter_visible_projects(
    caller: UserProfile,
    projects: Iterable[Any],
    member_project_ids: Iterable[int],
    creators: Optional[Dict[int, UserProfile]] = None,
) -> List[Any]:
    """
    Filter a project listing down to what the caller may see.

    Listing never raises for projects the caller has no membership in; those
    projects are simply left out.

    Args:
        caller: Profile of the acting user
        projects: Candidate projects (anything exposing id and creator_id)
        member_project_ids: Ids of projects the caller is a member of
        creators: Creator profiles keyed by user id, for manager visibility

    Returns:
        Visible projects in their original order
    """
    member_ids: Set[int] = set(member_project_ids)
    creators = creators or {}
    visible = []
    for project in projects:
        context = ResourceContext(
            membership={"role": ProjectRole.COLLABORATOR.value} if project.id in member_ids else None,
            project_creator=creators.get(project.creator_id),
        )
        if evaluate_permission(Action.VIEW_PROJECT, caller, context).allowed:
            visible.append(project)
    logger.debug(f"User {caller.user_id} can see {len(visible)} project(s)")
    return visible
