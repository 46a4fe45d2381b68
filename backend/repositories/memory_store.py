"""
In-memory TaskStore used for local demos and service tests.

Entities are copied on the way in and out, so callers never share mutable state
with the store; a change only lands through an upsert.

One instance serves every request thread. An RLock is held for each read and
write and for the whole of an outermost transaction, so a concurrent request
never sees or rolls back another request's half-finished work.
"""

import copy
import functools
import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Dict, Iterator, List, Optional, Tuple

from entities import Comment, HoursEntry, Notification, Project, ProjectMember, Task, User
from errors import ConcurrentModification
from repositories.base import TaskStore
from time_utils import utc_now

logger = logging.getLogger(__name__)


def _locked(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


class InMemoryStore(TaskStore):

    def __init__(self):
        self._lock = threading.RLock()
        self._local = threading.local()
        self._users: Dict[int, User] = {}
        self._projects: Dict[int, Project] = {}
        self._members: Dict[Tuple[int, int], ProjectMember] = {}
        self._tasks: Dict[int, Task] = {}
        self._hours: Dict[Tuple[int, int], HoursEntry] = {}
        self._comments: Dict[int, Comment] = {}
        self._notifications: Dict[int, Notification] = {}
        self._next_ids: Dict[str, int] = {"user": 1, "project": 1, "task": 1, "comment": 1, "notification": 1}

    def _next_id(self, kind: str) -> int:
        value = self._next_ids[kind]
        self._next_ids[kind] = value + 1
        return value

    def _state(self) -> Dict[str, Any]:
        return {
            "users": self._users,
            "projects": self._projects,
            "members": self._members,
            "tasks": self._tasks,
            "hours": self._hours,
            "comments": self._comments,
            "notifications": self._notifications,
            "next_ids": self._next_ids,
        }

    @contextmanager
    def transaction(self) -> Iterator[None]:
        # Nested blocks on the same thread join the outermost transaction
        if getattr(self._local, "depth", 0):
            yield
            return
        with self._lock:
            snapshot = copy.deepcopy(self._state())
            self._local.depth = 1
            try:
                yield
            except Exception:
                logger.info("Rolling back in-memory transaction")
                self._users = snapshot["users"]
                self._projects = snapshot["projects"]
                self._members = snapshot["members"]
                self._tasks = snapshot["tasks"]
                self._hours = snapshot["hours"]
                self._comments = snapshot["comments"]
                self._notifications = snapshot["notifications"]
                self._next_ids = snapshot["next_ids"]
                raise
            finally:
                self._local.depth = 0

    # Users

    @_locked
    def get_user(self, user_id: int) -> Optional[User]:
        user = self._users.get(user_id)
        return replace(user) if user else None

    @_locked
    def get_user_by_email(self, email: str) -> Optional[User]:
        for user in self._users.values():
            if user.email == email:
                return replace(user)
        return None

    @_locked
    def list_users(self, user_ids: Optional[List[int]] = None) -> List[User]:
        users = self._users.values()
        if user_ids is not None:
            wanted = set(user_ids)
            users = [u for u in users if u.id in wanted]
        return [replace(u) for u in sorted(users, key=lambda u: u.id)]

    @_locked
    def search_users(self, query: str, limit: int) -> List[User]:
        needle = (query or "").strip().lower()
        matches = [
            u for u in self._users.values()
            if u.is_active and (needle in u.name.lower() or needle in u.email.lower())
        ]
        matches.sort(key=lambda u: (u.name.lower(), u.id))
        return [replace(u) for u in matches[:limit]]

    @_locked
    def upsert_user(self, user: User) -> User:
        if user.id is None:
            user = replace(user, id=self._next_id("user"), created_at=user.created_at or utc_now())
        self._users[user.id] = replace(user)
        return replace(user)

    # Projects and memberships

    @_locked
    def get_project(self, project_id: int) -> Optional[Project]:
        project = self._projects.get(project_id)
        return replace(project) if project else None

    @_locked
    def list_projects(self, status: Optional[str] = None) -> List[Project]:
        return [
            replace(p) for p in sorted(self._projects.values(), key=lambda p: p.id)
            if status is None or p.status == status
        ]

    @_locked
    def upsert_project(self, project: Project) -> Project:
        now = utc_now()
        if project.id is None:
            project = replace(project, id=self._next_id("project"), created_at=now)
        project = replace(project, updated_at=now)
        self._projects[project.id] = replace(project)
        return replace(project)

    @_locked
    def get_project_membership(self, project_id: int, user_id: int) -> Optional[ProjectMember]:
        member = self._members.get((project_id, user_id))
        return replace(member) if member else None

    @_locked
    def list_members(self, project_id: int) -> List[ProjectMember]:
        members = [m for (pid, _), m in self._members.items() if pid == project_id]
        return [replace(m) for m in sorted(members, key=lambda m: m.user_id)]

    @_locked
    def list_member_project_ids(self, user_id: int) -> List[int]:
        return sorted(pid for (pid, uid) in self._members if uid == user_id)

    @_locked
    def upsert_membership(self, membership: ProjectMember) -> ProjectMember:
        if membership.added_at is None:
            membership = replace(membership, added_at=utc_now())
        self._members[(membership.project_id, membership.user_id)] = replace(membership)
        return replace(membership)

    @_locked
    def delete_membership(self, project_id: int, user_id: int) -> None:
        self._members.pop((project_id, user_id), None)

    # Tasks

    @_locked
    def get_task(self, task_id: int) -> Optional[Task]:
        task = self._tasks.get(task_id)
        return copy.deepcopy(task) if task else None

    @_locked
    def list_tasks_for_project(self, project_id: int, filters: Optional[Dict[str, Any]] = None) -> List[Task]:
        filters = filters or {}
        tasks = []
        for task in sorted(self._tasks.values(), key=lambda t: t.id):
            if task.project_id != project_id:
                continue
            if "archived" in filters and task.archived != filters["archived"]:
                continue
            if filters.get("status") and task.status != filters["status"]:
                continue
            if filters.get("priority") and task.priority != filters["priority"]:
                continue
            if filters.get("assigned_to") and filters["assigned_to"] not in task.assigned_to:
                continue
            if filters.get("top_level_only") and task.parent_id is not None:
                continue
            tasks.append(copy.deepcopy(task))
        return tasks

    @_locked
    def list_subtasks(self, parent_id: int) -> List[Task]:
        return [
            copy.deepcopy(t) for t in sorted(self._tasks.values(), key=lambda t: t.id)
            if t.parent_id == parent_id
        ]

    @_locked
    def upsert_task(self, task: Task, expected_version: Optional[int] = None) -> Task:
        now = utc_now()
        if task.id is None:
            task = replace(task, id=self._next_id("task"), created_at=now, version=0)
        else:
            stored = self._tasks.get(task.id)
            current_version = stored.version if stored else 0
            if expected_version is not None and current_version != expected_version:
                logger.info(
                    f"Version conflict on task {task.id}: expected {expected_version}, "
                    f"stored {current_version}"
                )
                raise ConcurrentModification("Task was modified by another request. Reload and try again.")
            task = replace(task, version=current_version)
        task = replace(
            task,
            version=task.version + 1,
            updated_at=now,
            assigned_to=list(task.assigned_to),
            tags=list(task.tags),
        )
        self._tasks[task.id] = copy.deepcopy(task)
        return copy.deepcopy(task)

    # Time entries

    @_locked
    def list_hours(self, task_ids: Optional[List[int]] = None) -> List[HoursEntry]:
        wanted = set(task_ids) if task_ids is not None else None
        entries = []
        for (task_id, _), entry in sorted(self._hours.items()):
            if wanted is not None and task_id not in wanted:
                continue
            task = self._tasks.get(task_id)
            entries.append(replace(entry, project_id=task.project_id if task else None))
        return entries

    @_locked
    def upsert_hours(self, entry: HoursEntry) -> HoursEntry:
        entry = replace(entry, updated_at=utc_now())
        self._hours[(entry.task_id, entry.user_id)] = replace(entry)
        return replace(entry)

    @_locked
    def delete_hours(self, task_id: int, user_id: int) -> None:
        self._hours.pop((task_id, user_id), None)

    # Comments

    @_locked
    def get_comment(self, comment_id: int) -> Optional[Comment]:
        comment = self._comments.get(comment_id)
        return replace(comment) if comment else None

    @_locked
    def list_comments(self, task_id: int) -> List[Comment]:
        return [
            replace(c) for c in sorted(self._comments.values(), key=lambda c: c.id)
            if c.task_id == task_id
        ]

    @_locked
    def upsert_comment(self, comment: Comment) -> Comment:
        now = utc_now()
        if comment.id is None:
            comment = replace(comment, id=self._next_id("comment"), created_at=now)
        comment = replace(comment, updated_at=now)
        self._comments[comment.id] = replace(comment)
        return replace(comment)

    # Notifications

    @_locked
    def add_notification(self, notification: Notification) -> Notification:
        notification = replace(
            notification,
            id=self._next_id("notification"),
            created_at=notification.created_at or utc_now(),
        )
        self._notifications[notification.id] = replace(notification)
        return replace(notification)

    @_locked
    def list_notifications(
        self,
        recipient_id: Optional[int] = None,
        creator_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Notification]:
        matches = [
            n for n in self._notifications.values()
            if (recipient_id is None or n.recipient_id == recipient_id)
            and (creator_id is None or n.creator_id == creator_id)
        ]
        matches.sort(key=lambda n: n.id, reverse=True)
        return [replace(n) for n in matches[offset:offset + limit]]
