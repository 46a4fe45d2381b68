"""
Project orchestration: creation, visibility, membership and the archive cascade.

Every method follows the same order: load what it needs, check permission,
validate input, then persist inside one store transaction.
"""

import logging
from dataclasses import asdict, replace
from typing import Any, Dict, List, Optional

from auth.permissions import Action, evaluate_permission, filter_visible_projects
from auth.roles import ProjectRole, UserProfile, parse_project_role
from entities import Project, ProjectMember
from errors import NotFound, ServiceError, ServiceFailure, ValidationFailed
from repositories.base import TaskStore
from services.access import (
    authorize, ensure_not_archived, load_profile, require_project,
)
from services.notifications import NotificationService
from services.users import user_summary
from time_utils import is_overdue
from validation import (
    EMPTY_UPDATE, TASK_STATUSES, normalize_assignees, normalize_project_status,
    require_fields, validate_sorting,
)

logger = logging.getLogger(__name__)

MISSING_PROJECT_FIELDS = "Missing required fields: name and description are required"


class ProjectService:

    def __init__(self, store: TaskStore):
        self.store = store

    def _project_view(self, project: Project, task_count: Optional[int] = None) -> Dict[str, Any]:
        data = asdict(project)
        if task_count is None:
            task_count = len(self.store.list_tasks_for_project(project.id, {"archived": False}))
        data["task_count"] = task_count
        return data

    def _existing_users(self, user_ids: List[int]) -> None:
        found = {user.id for user in self.store.list_users(user_ids)}
        missing = [user_id for user_id in user_ids if user_id not in found]
        if missing:
            logger.info(f"Unknown user ids: {missing}")
            raise NotFound(f"User(s) not found: {', '.join(str(m) for m in missing)}")

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, data: Dict[str, Any], creator_id: int) -> Dict[str, Any]:
        """
        Create an active project with the caller as its creator member.

        Optional data["user_ids"] are added as collaborators in the same transaction.
        """
        caller = load_profile(self.store, creator_id)
        evaluate_permission(Action.CREATE_PROJECT, caller).raise_for_denial()

        require_fields(data, ("name", "description"), MISSING_PROJECT_FIELDS)
        collaborator_ids = normalize_assignees(data.get("user_ids")).unwrap()
        collaborator_ids = [user_id for user_id in collaborator_ids if user_id != creator_id]
        self._existing_users(collaborator_ids)

        with self.store.transaction():
            project = self.store.upsert_project(Project(
                id=None,
                name=data["name"].strip(),
                description=data["description"].strip(),
                creator_id=creator_id,
                status="active",
            ))
            self.store.upsert_membership(ProjectMember(
                project_id=project.id, user_id=creator_id, role=ProjectRole.CREATOR.value,
            ))
            for user_id in collaborator_ids:
                self.store.upsert_membership(ProjectMember(
                    project_id=project.id, user_id=user_id, role=ProjectRole.COLLABORATOR.value,
                ))

        logger.info(f"Project {project.id} '{project.name}' created by user {creator_id}")
        return self._project_view(project, 0)

    def get_project(self, project_id: int, caller_id: int) -> Dict[str, Any]:
        caller = load_profile(self.store, caller_id)
        project = require_project(self.store, project_id)
        authorize(self.store, Action.VIEW_PROJECT, caller, project)
        return self._project_view(project)

    def list_projects(
        self,
        caller_id: int,
        status: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Projects visible to the caller, each with its live task count."""
        caller = load_profile(self.store, caller_id)
        if status:
            status = normalize_project_status(status).unwrap()
        sorting = validate_sorting("projects", sort_by, sort_order).unwrap()

        projects = self.store.list_projects(status=status)
        creator_ids = list({p.creator_id for p in projects if p.creator_id is not None})
        creators = {
            user.id: UserProfile.from_user(user) for user in self.store.list_users(creator_ids)
        }
        visible = filter_visible_projects(
            caller, projects, self.store.list_member_project_ids(caller.user_id), creators
        )
        visible.sort(
            key=lambda p: _sort_value(getattr(p, sorting["sort_by"])),
            reverse=sorting["sort_order"] == "desc",
        )
        return [self._project_view(project) for project in visible]

    def update_project(self, project_id: int, patch: Dict[str, Any], caller_id: int) -> Dict[str, Any]:
        caller = load_profile(self.store, caller_id)
        project = require_project(self.store, project_id)
        authorize(self.store, Action.EDIT_PROJECT, caller, project)
        ensure_not_archived(project)

        changes: Dict[str, Any] = {}
        for name in ("name", "description"):
            if patch.get(name) is not None:
                value = str(patch[name]).strip()
                if not value:
                    raise ValidationFailed(f"{name.capitalize()} cannot be empty")
                changes[name] = value
        if patch.get("status") is not None:
            changes["status"] = normalize_project_status(patch["status"]).unwrap()
        if not changes:
            raise ValidationFailed(EMPTY_UPDATE)

        if changes.get("status") == "archived":
            other = {k: v for k, v in changes.items() if k != "status"}
            with self.store.transaction():
                if other:
                    self.store.upsert_project(replace(project, **other))
                return self.archive_project(project_id, caller_id)

        with self.store.transaction():
            project = self.store.upsert_project(replace(project, **changes))
        logger.info(f"Project {project_id} updated by user {caller_id}: {sorted(changes)}")
        return self._project_view(project)

    def archive_project(self, project_id: int, caller_id: int) -> Dict[str, Any]:
        """
        Archive a project and every task in it as one all-or-nothing operation.

        Raises:
            ServiceFailure: if any write fails; nothing is persisted in that case
        """
        caller = load_profile(self.store, caller_id)
        project = require_project(self.store, project_id)
        authorize(self.store, Action.ARCHIVE_PROJECT, caller, project)
        if project.status == "archived":
            raise ValidationFailed("Project is already archived")

        archived_count = 0
        try:
            with self.store.transaction():
                project = self.store.upsert_project(replace(project, status="archived"))
                for task in self.store.list_tasks_for_project(project_id):
                    if not task.archived:
                        self.store.upsert_task(replace(task, archived=True))
                        archived_count += 1
        except ServiceFailure:
            raise
        except ServiceError as e:
            logger.error(f"Archiving project {project_id} failed: {e.message}")
            raise ServiceFailure(f"Failed to archive project: {e.message}") from e

        logger.info(f"Project {project_id} archived by user {caller_id} ({archived_count} task(s) archived)")
        return self._project_view(project, 0)

    # ------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------

    def _member_views(self, project_id: int) -> List[Dict[str, Any]]:
        members = self.store.list_members(project_id)
        users = {u.id: u for u in self.store.list_users([m.user_id for m in members])}
        views = []
        for member in members:
            user = users.get(member.user_id)
            views.append({
                "user_id": member.user_id,
                "name": user.name if user else None,
                "email": user.email if user else None,
                "role": member.role,
                "global_role": user.role if user else None,
                "added_at": member.added_at,
            })
        return views

    def list_members(self, project_id: int, caller_id: int) -> List[Dict[str, Any]]:
        caller = load_profile(self.store, caller_id)
        project = require_project(self.store, project_id)
        authorize(self.store, Action.VIEW_PROJECT, caller, project)
        return self._member_views(project_id)

    def list_assignable_users(self, project_id: int, caller_id: int) -> List[Dict[str, Any]]:
        """Active project members, ordered by name, who can be put on the project's tasks."""
        caller = load_profile(self.store, caller_id)
        project = require_project(self.store, project_id)
        authorize(self.store, Action.VIEW_PROJECT, caller, project)

        member_ids = [m.user_id for m in self.store.list_members(project_id)]
        users = [u for u in self.store.list_users(member_ids) if u.is_active]
        users.sort(key=lambda u: (u.name.lower(), u.id))
        logger.info(f"Project {project_id}: {len(users)} assignable users")
        return [user_summary(user) for user in users]

    def add_users_to_project(
        self,
        project_id: int,
        user_ids: Any,
        inviter_id: int,
        message: Optional[str] = None,
        role: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Add users to a project, skipping anyone who is already a member.

        Each new member gets an invitation notification carrying the optional message.

        The creator role is unique and only assigned when the project is created,
        so it is rejected here.
        """
        caller = load_profile(self.store, inviter_id)
        project = require_project(self.store, project_id)
        authorize(self.store, Action.ADD_PROJECT_MEMBERS, caller, project)
        ensure_not_archived(project)

        member_role = parse_project_role(role or ProjectRole.COLLABORATOR.value)
        if member_role == ProjectRole.CREATOR:
            raise ValidationFailed("The creator role cannot be assigned. It is set when the project is created.")

        ids = normalize_assignees(user_ids).unwrap()
        if not ids:
            raise ValidationFailed("At least one user id is required")
        self._existing_users(ids)

        existing = {m.user_id for m in self.store.list_members(project_id)}
        new_ids = [user_id for user_id in ids if user_id not in existing]
        with self.store.transaction():
            for user_id in new_ids:
                self.store.upsert_membership(ProjectMember(
                    project_id=project_id, user_id=user_id, role=member_role.value,
                ))
            NotificationService(self.store).notify_project_invitation(
                project, new_ids, inviter_id, member_role.value, message
            )

        skipped = len(ids) - len(new_ids)
        logger.info(
            f"User {inviter_id} added {len(new_ids)} member(s) to project {project_id} "
            f"as {member_role.value} ({skipped} already members)"
        )
        return self._member_views(project_id)

    def remove_user_from_project(self, project_id: int, user_id: int, caller_id: int) -> List[Dict[str, Any]]:
        """
        Remove a member and strip them from the assignees of the project's live tasks.

        The creator can never be removed, regardless of the caller's role. The
        removal is rejected if it would leave any task without an assignee.
        """
        caller = load_profile(self.store, caller_id)
        project = require_project(self.store, project_id)
        authorize(self.store, Action.REMOVE_PROJECT_MEMBER, caller, project)
        ensure_not_archived(project)

        membership = self.store.get_project_membership(project_id, user_id)
        if membership is None:
            raise NotFound("User is not a member of this project")
        if membership.role == ProjectRole.CREATOR.value or project.creator_id == user_id:
            logger.info(f"User {caller_id} attempted to remove creator {user_id} from project {project_id}")
            raise ValidationFailed("Cannot remove the project creator")

        affected = []
        for task in self.store.list_tasks_for_project(project_id, {"archived": False}):
            if user_id not in task.assigned_to:
                continue
            remaining = [a for a in task.assigned_to if a != user_id]
            if not remaining:
                logger.info(f"Removing user {user_id} would leave task {task.id} without assignees")
                raise ValidationFailed(
                    f"Cannot remove user: task {task.id} would be left without an assignee. "
                    "Reassign it first."
                )
            affected.append(replace(task, assigned_to=remaining))

        with self.store.transaction():
            for task in affected:
                self.store.upsert_task(task)
                self.store.delete_hours(task.id, user_id)
            self.store.delete_membership(project_id, user_id)

        logger.info(
            f"User {user_id} removed from project {project_id} by user {caller_id} "
            f"({len(affected)} task(s) reassigned)"
        )
        return self._member_views(project_id)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_project_stats(self, project_id: int, caller_id: int) -> Dict[str, Any]:
        """Counts by status and priority, overdue count and completion rate of live tasks."""
        caller = load_profile(self.store, caller_id)
        project = require_project(self.store, project_id)
        authorize(self.store, Action.VIEW_PROJECT, caller, project)

        tasks = self.store.list_tasks_for_project(project_id, {"archived": False})
        by_status = {status: 0 for status in TASK_STATUSES}
        by_priority: Dict[int, int] = {}
        overdue = 0
        for task in tasks:
            by_status[task.status] = by_status.get(task.status, 0) + 1
            by_priority[task.priority] = by_priority.get(task.priority, 0) + 1
            if is_overdue(task.deadline, task.status):
                overdue += 1

        total = len(tasks)
        completion_rate = round(by_status["completed"] / total * 100, 1) if total else 0.0
        return {
            "project_id": project_id,
            "total": total,
            "by_status": by_status,
            "by_priority": dict(sorted(by_priority.items())),
            "overdue": overdue,
            "completion_rate": completion_rate,
        }


def _sort_value(value: Any) -> Any:
    # Mixed None/str/datetime values must still be comparable
    return (value is not None, value if value is not None else 0)
