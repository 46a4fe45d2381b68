"""
Task orchestration: creation, updates, listing and per-assignee hours.

Logged hours never live on the task row. An update carrying an "hours" value
records the caller's own hours for the task through the time-tracking path.
"""

import logging
import math
from dataclasses import replace
from typing import Any, Dict, List, Optional

from auth.permissions import Action
from auth.roles import is_project_admin_role, parse_project_role
from entities import HoursEntry, Task
from errors import ConcurrentModification, PermissionDenied, ValidationFailed
from repositories.base import TaskStore
from services.access import (
    authorize, hours_by_task, load_profile, require_project, require_task,
    require_task_view, split_assignee_change, task_view,
)
from time_tracking import normalize_logged_hours, summarize_hours
from validation import (
    ARCHIVED_PROJECT, normalize_assignees, validate_pagination, validate_sorting,
    validate_task_create, validate_task_filters, validate_task_update,
)

logger = logging.getLogger(__name__)


class TaskService:

    def __init__(self, store: TaskStore):
        self.store = store

    def create_task(self, project_id: int, draft: Dict[str, Any], creator_id: int) -> Dict[str, Any]:
        """
        Create a task (or a subtask when draft has a parent_id).

        Subtasks always belong to their parent's project. The creator is always
        one of the assignees.
        """
        caller = load_profile(self.store, creator_id)
        project = require_project(self.store, project_id)

        parent_id = draft.get("parent_id")
        if parent_id is not None:
            parent = require_task(self.store, parent_id)
            if parent.parent_id is not None:
                raise ValidationFailed("Subtasks cannot have their own subtasks")
            if parent.project_id != project.id:
                logger.debug(f"Subtask inherits project {parent.project_id} from parent task {parent.id}")
                project = require_project(self.store, parent.project_id)

        authorize(self.store, Action.CREATE_TASK, caller, project)

        assignees = normalize_assignees(draft.get("assigned_to")).unwrap()
        if creator_id not in assignees:
            assignees.insert(0, creator_id)
        found = {user.id for user in self.store.list_users(assignees)}
        missing = [user_id for user_id in assignees if user_id not in found]
        if missing:
            raise ValidationFailed(f"Assignee(s) not found: {', '.join(str(m) for m in missing)}")

        values = validate_task_create({**draft, "assigned_to": assignees}, project).unwrap()
        task = Task(
            id=None,
            project_id=project.id,
            title=values["title"],
            description=values["description"],
            priority=values["priority"],
            status=values["status"],
            deadline=values["deadline"],
            assigned_to=values["assigned_to"],
            tags=values["tags"],
            parent_id=values["parent_id"],
        )
        with self.store.transaction():
            task = self.store.upsert_task(task)

        logger.info(f"Task {task.id} created in project {project.id} by user {creator_id}")
        return task_view(task, [])

    def update_task(self, task_id: int, patch: Dict[str, Any], caller_id: int) -> Dict[str, Any]:
        """
        Apply a partial update to a task.

        patch may carry "version" for a compare-and-swap write and "hours" to
        record the caller's own logged hours. Callers who are only assignees
        cannot change assigned_to or archived.
        """
        caller = load_profile(self.store, caller_id)
        task = require_task(self.store, task_id)
        project = require_project(self.store, task.project_id)
        membership = authorize(self.store, Action.MODIFY_TASK, caller, project, task)

        fields = dict(patch)
        expected_version = fields.pop("version", None)
        has_hours = "hours" in fields
        hours = fields.pop("hours", None)

        if fields or not has_hours:
            changes = validate_task_update(task, fields, project).unwrap()
        else:
            if project.status == "archived":
                raise ValidationFailed(ARCHIVED_PROJECT)
            changes = {}

        manages = caller.is_admin or (
            membership is not None and is_project_admin_role(parse_project_role(membership.role))
        )
        if not manages:
            if "assigned_to" in changes and changes["assigned_to"] != task.assigned_to:
                raise PermissionDenied("Only project managers can change task assignees")
            if "archived" in changes and changes["archived"] != task.archived:
                raise PermissionDenied("Only project managers can archive tasks")

        new_assignees = changes.get("assigned_to", task.assigned_to)
        if "assigned_to" in changes:
            found = {user.id for user in self.store.list_users(new_assignees)}
            missing = [user_id for user_id in new_assignees if user_id not in found]
            if missing:
                raise ValidationFailed(f"Assignee(s) not found: {', '.join(str(m) for m in missing)}")

        logged_hours = None
        if has_hours:
            logged_hours = normalize_logged_hours(hours)
            if caller.user_id not in new_assignees:
                raise PermissionDenied("Only assignees can log hours on this task")

        _, removed = split_assignee_change(task.assigned_to, new_assignees)
        with self.store.transaction():
            if changes:
                task = self.store.upsert_task(replace(task, **changes), expected_version)
            elif expected_version is not None and expected_version != task.version:
                raise ConcurrentModification("Task was modified by another request. Reload and try again.")
            for user_id in removed:
                self.store.delete_hours(task.id, user_id)
            if logged_hours is not None:
                self.store.upsert_hours(HoursEntry(task_id=task.id, user_id=caller.user_id, hours=logged_hours))

        logger.info(
            f"Task {task_id} updated by user {caller_id}: {sorted(changes)}"
            + (f", hours={logged_hours}" if logged_hours is not None else "")
        )
        return task_view(task, self.store.list_hours([task.id]))

    def get_task(self, task_id: int, caller_id: int) -> Dict[str, Any]:
        caller = load_profile(self.store, caller_id)
        task = require_task(self.store, task_id)
        require_task_view(self.store, caller, task)
        return task_view(task, self.store.list_hours([task.id]))

    def list_project_tasks(
        self,
        project_id: int,
        caller_id: int,
        filters: Optional[Dict[str, Any]] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        page: Any = None,
        limit: Any = None,
    ) -> Dict[str, Any]:
        """
        Paged, filtered and sorted listing of a project's tasks.

        Returns:
            {"tasks": [...], "pagination": {...}, "filters": {...}, "sorting": {...}}
        """
        caller = load_profile(self.store, caller_id)
        project = require_project(self.store, project_id)
        authorize(self.store, Action.VIEW_PROJECT, caller, project)

        filters = filters or {}
        applied = validate_task_filters(
            status=filters.get("status"),
            priority=filters.get("priority"),
            assigned_to=filters.get("assigned_to"),
            archived=filters.get("archived"),
        ).unwrap()
        sorting = validate_sorting("tasks", sort_by, sort_order).unwrap()
        paging = validate_pagination(page, limit).unwrap()

        tasks = _sorted_tasks(
            self.store.list_tasks_for_project(project_id, applied),
            sorting["sort_by"],
            sorting["sort_order"] == "desc",
        )
        total = len(tasks)
        page_tasks = tasks[paging["offset"]:paging["offset"] + paging["limit"]]
        hours = hours_by_task(self.store, [t.id for t in page_tasks])

        total_pages = math.ceil(total / paging["limit"]) if total else 0
        return {
            "tasks": [task_view(t, hours.get(t.id, [])) for t in page_tasks],
            "pagination": {
                "page": paging["page"],
                "limit": paging["limit"],
                "total": total,
                "total_pages": total_pages,
                "has_next": paging["page"] < total_pages,
                "has_prev": paging["page"] > 1,
            },
            "filters": applied,
            "sorting": sorting,
        }

    def list_subtasks(self, task_id: int, caller_id: int) -> List[Dict[str, Any]]:
        caller = load_profile(self.store, caller_id)
        parent = require_task(self.store, task_id)
        require_task_view(self.store, caller, parent)
        subtasks = self.store.list_subtasks(task_id)
        hours = hours_by_task(self.store, [t.id for t in subtasks])
        return [task_view(t, hours.get(t.id, [])) for t in subtasks]

    def get_task_hours(self, task_id: int, caller_id: int) -> Dict[str, Any]:
        """Hours summary of a task; every current assignee appears, with 0 if nothing was logged."""
        caller = load_profile(self.store, caller_id)
        task = require_task(self.store, task_id)
        require_task_view(self.store, caller, task)
        summary = summarize_hours(self.store.list_hours([task.id]), include=task.assigned_to)
        summary["task_id"] = task.id
        return summary


def _sorted_tasks(tasks: List[Task], sort_by: str, descending: bool) -> List[Task]:
    # Tasks without a value for the sort field (e.g. no deadline) always go last
    present = [t for t in tasks if getattr(t, sort_by) is not None]
    missing = [t for t in tasks if getattr(t, sort_by) is None]
    present.sort(key=lambda t: (getattr(t, sort_by), t.id), reverse=descending)
    return present + missing
