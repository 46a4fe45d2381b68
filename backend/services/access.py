"""
Loading and gating helpers shared by the services.

Each helper re-reads what it needs from the store; nothing is cached between
calls so every request sees the current membership and project state.
"""

import logging
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Tuple

from auth.permissions import Action, ResourceContext, evaluate_permission
from auth.roles import GlobalRole, UserProfile, can_view_user_data
from entities import Project, ProjectMember, Task
from errors import NotFound, PermissionDenied, ValidationFailed
from repositories.base import TaskStore
from time_utils import is_overdue
from time_tracking import summarize_hours
from validation import ARCHIVED_PROJECT

logger = logging.getLogger(__name__)


def load_profile(store: TaskStore, user_id: int) -> UserProfile:
    user = store.get_user(user_id)
    if user is None or not user.is_active:
        logger.info(f"User {user_id} not found or inactive")
        raise NotFound("User not found")
    return UserProfile.from_user(user)


def require_project(store: TaskStore, project_id: int) -> Project:
    project = store.get_project(project_id)
    if project is None:
        logger.info(f"Project {project_id} not found")
        raise NotFound("Project not found")
    return project


def require_task(store: TaskStore, task_id: int) -> Task:
    task = store.get_task(task_id)
    if task is None:
        logger.info(f"Task {task_id} not found")
        raise NotFound("Task not found")
    return task


def ensure_not_archived(project: Project) -> None:
    if project.status == "archived":
        logger.info(f"Project {project.id} is archived, rejecting mutation")
        raise ValidationFailed(ARCHIVED_PROJECT)


def creator_profile(store: TaskStore, project: Project) -> Optional[UserProfile]:
    if project.creator_id is None:
        return None
    creator = store.get_user(project.creator_id)
    return UserProfile.from_user(creator) if creator else None


def authorize(
    store: TaskStore,
    action: Action,
    caller: UserProfile,
    project: Project,
    task: Optional[Task] = None,
) -> Optional[ProjectMember]:
    """
    Resolve the caller's membership and raise PermissionDenied unless allowed.

    Returns:
        The caller's membership in the project, or None
    """
    membership = store.get_project_membership(project.id, caller.user_id)
    context = ResourceContext(
        membership=membership,
        task_assignee_ids=list(task.assigned_to) if task else [],
    )
    if action == Action.VIEW_PROJECT and membership is None:
        context.project_creator = creator_profile(store, project)
    evaluate_permission(action, caller, context).raise_for_denial()
    return membership


def can_view_task(store: TaskStore, caller: UserProfile, project: Project, task: Task) -> bool:
    """Project viewers, task assignees, and managers over an assignee may see a task."""
    if caller.user_id in task.assigned_to:
        return True
    membership = store.get_project_membership(project.id, caller.user_id)
    context = ResourceContext(membership=membership)
    if membership is None:
        context.project_creator = creator_profile(store, project)
    if evaluate_permission(Action.VIEW_PROJECT, caller, context).allowed:
        return True
    return manages_any_assignee(store, caller, task)


def manages_any_assignee(store: TaskStore, caller: UserProfile, task: Task) -> bool:
    if caller.global_role != GlobalRole.MANAGER:
        return False
    for assignee in store.list_users(list(task.assigned_to)):
        if can_view_user_data(caller, UserProfile.from_user(assignee)):
            return True
    return False


def require_task_view(store: TaskStore, caller: UserProfile, task: Task) -> Project:
    project = require_project(store, task.project_id)
    if not can_view_task(store, caller, project, task):
        logger.info(f"User {caller.user_id} cannot view task {task.id}")
        raise PermissionDenied("not a project member")
    return project


def task_view(task: Task, hours: Optional[List[Any]] = None) -> Dict[str, Any]:
    """Serialize a task with its overdue flag and, when hours are given, its time summary."""
    data = asdict(task)
    data["is_overdue"] = is_overdue(task.deadline, task.status)
    if hours is not None:
        data["time_tracking"] = summarize_hours(hours, include=task.assigned_to)
    return data


def hours_by_task(store: TaskStore, task_ids: List[int]) -> Dict[int, List[Any]]:
    grouped: Dict[int, List[Any]] = {task_id: [] for task_id in task_ids}
    for entry in store.list_hours(task_ids):
        grouped.setdefault(entry.task_id, []).append(entry)
    return grouped


def split_assignee_change(old: List[int], new: List[int]) -> Tuple[List[int], List[int]]:
    """Return (added, removed) user ids between two assignee lists."""
    added = [user_id for user_id in new if user_id not in old]
    removed = [user_id for user_id in old if user_id not in new]
    return added, removed
