"""
SQLAlchemy implementation of the store port.

ORM rows never leave this module: every read is mapped to an entity from
entities.py. Writes are flushed immediately (so ids are available) and
committed when the outermost transaction() block exits.
"""

import functools
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from entities import Comment, HoursEntry, Notification, Project, ProjectMember, Task, User
from errors import ConcurrentModification, ServiceFailure
from repositories.base import TaskStore

logger = logging.getLogger(__name__)


def _store_call(method):
    """Re-raise database errors as ServiceFailure after rolling back the session."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"Store operation {method.__name__} failed: {str(e)}")
            self.session.rollback()
            raise ServiceFailure("Database operation failed") from e

    return wrapper


def _user(row: models.User) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        role=row.role,
        hierarchy=row.hierarchy if row.hierarchy is not None else 1,
        division=row.division,
        department=row.department,
        password_hash=row.password_hash,
        is_active=bool(row.is_active),
        created_at=row.created_at,
    )


def _project(row: models.Project) -> Project:
    return Project(
        id=row.id,
        name=row.name,
        description=row.description or "",
        creator_id=row.creator_id,
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _member(row: models.ProjectMember) -> ProjectMember:
    return ProjectMember(
        project_id=row.project_id,
        user_id=row.user_id,
        role=row.member_role,
        added_at=row.added_at,
    )


def _task(row: models.Task) -> Task:
    return Task(
        id=row.id,
        project_id=row.project_id,
        title=row.title,
        description=row.description or "",
        priority=row.priority,
        status=row.status,
        deadline=row.deadline,
        assigned_to=list(row.assigned_to or []),
        tags=list(row.tags or []),
        parent_id=row.parent_id,
        archived=bool(row.archived),
        version=row.version or 0,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _comment(row: models.Comment) -> Comment:
    return Comment(
        id=row.id,
        task_id=row.task_id,
        user_id=row.user_id,
        content=row.content,
        parent_id=row.parent_id,
        edited=bool(row.edited),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _notification(row: models.Notification) -> Notification:
    return Notification(
        id=row.id,
        kind=row.notif_type,
        message=row.message,
        recipient_id=row.recipient_id,
        creator_id=row.creator_id,
        project_id=row.project_id,
        task_id=row.task_id,
        created_at=row.created_at,
    )


TASK_COLUMNS = (
    "title", "description", "priority", "status", "deadline",
    "assigned_to", "tags", "parent_id", "archived",
)


class SqlAlchemyStore(TaskStore):

    def __init__(self, session: Session):
        self.session = session
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._depth:
            yield
            return
        self._depth += 1
        try:
            yield
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Transaction failed, rolled back: {str(e)}")
            raise ServiceFailure("Database operation failed") from e
        except Exception:
            self.session.rollback()
            raise
        finally:
            self._depth -= 1

    # Users

    @_store_call
    def get_user(self, user_id: int) -> Optional[User]:
        row = self.session.query(models.User).filter(models.User.id == user_id).first()
        return _user(row) if row else None

    @_store_call
    def get_user_by_email(self, email: str) -> Optional[User]:
        row = self.session.query(models.User).filter(models.User.email == email).first()
        return _user(row) if row else None

    @_store_call
    def list_users(self, user_ids: Optional[List[int]] = None) -> List[User]:
        query = self.session.query(models.User)
        if user_ids is not None:
            if not user_ids:
                return []
            query = query.filter(models.User.id.in_(user_ids))
        return [_user(row) for row in query.order_by(models.User.id).all()]

    @_store_call
    def search_users(self, query: str, limit: int) -> List[User]:
        pattern = f"%{(query or '').strip()}%"
        rows = (
            self.session.query(models.User)
            .filter(
                models.User.is_active.is_(True),
                or_(models.User.name.ilike(pattern), models.User.email.ilike(pattern)),
            )
            .order_by(models.User.name, models.User.id)
            .limit(limit)
            .all()
        )
        return [_user(row) for row in rows]

    @_store_call
    def upsert_user(self, user: User) -> User:
        row = self.session.get(models.User, user.id) if user.id is not None else None
        if row is None:
            row = models.User()
            self.session.add(row)
        row.name = user.name
        row.email = user.email
        row.role = user.role
        row.hierarchy = user.hierarchy
        row.division = user.division
        row.department = user.department
        row.password_hash = user.password_hash
        row.is_active = user.is_active
        self.session.flush()
        return _user(row)

    # Projects and memberships

    @_store_call
    def get_project(self, project_id: int) -> Optional[Project]:
        row = self.session.query(models.Project).filter(models.Project.id == project_id).first()
        return _project(row) if row else None

    @_store_call
    def list_projects(self, status: Optional[str] = None) -> List[Project]:
        query = self.session.query(models.Project)
        if status is not None:
            query = query.filter(models.Project.status == status)
        return [_project(row) for row in query.order_by(models.Project.id).all()]

    @_store_call
    def upsert_project(self, project: Project) -> Project:
        row = self.session.get(models.Project, project.id) if project.id is not None else None
        if row is None:
            row = models.Project()
            self.session.add(row)
        row.name = project.name
        row.description = project.description
        row.creator_id = project.creator_id
        row.status = project.status
        self.session.flush()
        self.session.refresh(row)
        return _project(row)

    @_store_call
    def get_project_membership(self, project_id: int, user_id: int) -> Optional[ProjectMember]:
        row = (
            self.session.query(models.ProjectMember)
            .filter(
                models.ProjectMember.project_id == project_id,
                models.ProjectMember.user_id == user_id,
            )
            .first()
        )
        return _member(row) if row else None

    @_store_call
    def list_members(self, project_id: int) -> List[ProjectMember]:
        rows = (
            self.session.query(models.ProjectMember)
            .filter(models.ProjectMember.project_id == project_id)
            .order_by(models.ProjectMember.user_id)
            .all()
        )
        return [_member(row) for row in rows]

    @_store_call
    def list_member_project_ids(self, user_id: int) -> List[int]:
        rows = (
            self.session.query(models.ProjectMember.project_id)
            .filter(models.ProjectMember.user_id == user_id)
            .order_by(models.ProjectMember.project_id)
            .all()
        )
        return [row.project_id for row in rows]

    @_store_call
    def upsert_membership(self, membership: ProjectMember) -> ProjectMember:
        row = (
            self.session.query(models.ProjectMember)
            .filter(
                models.ProjectMember.project_id == membership.project_id,
                models.ProjectMember.user_id == membership.user_id,
            )
            .first()
        )
        if row is None:
            row = models.ProjectMember(project_id=membership.project_id, user_id=membership.user_id)
            self.session.add(row)
        row.member_role = membership.role
        self.session.flush()
        self.session.refresh(row)
        return _member(row)

    @_store_call
    def delete_membership(self, project_id: int, user_id: int) -> None:
        (
            self.session.query(models.ProjectMember)
            .filter(
                models.ProjectMember.project_id == project_id,
                models.ProjectMember.user_id == user_id,
            )
            .delete(synchronize_session=False)
        )
        self.session.flush()

    # Tasks

    @_store_call
    def get_task(self, task_id: int) -> Optional[Task]:
        row = self.session.query(models.Task).filter(models.Task.id == task_id).first()
        return _task(row) if row else None

    @_store_call
    def list_tasks_for_project(self, project_id: int, filters: Optional[Dict[str, Any]] = None) -> List[Task]:
        filters = filters or {}
        query = self.session.query(models.Task).filter(models.Task.project_id == project_id)
        if "archived" in filters:
            query = query.filter(models.Task.archived == filters["archived"])
        if filters.get("status"):
            query = query.filter(models.Task.status == filters["status"])
        if filters.get("priority"):
            query = query.filter(models.Task.priority == filters["priority"])
        if filters.get("top_level_only"):
            query = query.filter(models.Task.parent_id.is_(None))
        tasks = [_task(row) for row in query.order_by(models.Task.id).all()]
        # JSON array containment differs per dialect, so assignee filtering happens here
        if filters.get("assigned_to"):
            tasks = [t for t in tasks if filters["assigned_to"] in t.assigned_to]
        return tasks

    @_store_call
    def list_subtasks(self, parent_id: int) -> List[Task]:
        rows = (
            self.session.query(models.Task)
            .filter(models.Task.parent_id == parent_id)
            .order_by(models.Task.id)
            .all()
        )
        return [_task(row) for row in rows]

    @_store_call
    def upsert_task(self, task: Task, expected_version: Optional[int] = None) -> Task:
        values = {name: getattr(task, name) for name in TASK_COLUMNS}
        values["assigned_to"] = list(task.assigned_to)
        values["tags"] = list(task.tags)

        if task.id is None:
            row = models.Task(project_id=task.project_id, version=1, **values)
            self.session.add(row)
            self.session.flush()
            self.session.refresh(row)
            return _task(row)

        query = self.session.query(models.Task).filter(models.Task.id == task.id)
        if expected_version is not None:
            query = query.filter(models.Task.version == expected_version)
        values["version"] = models.Task.version + 1
        updated = query.update(values, synchronize_session=False)
        if updated == 0:
            logger.info(f"Version conflict on task {task.id}: expected {expected_version}")
            raise ConcurrentModification("Task was modified by another request. Reload and try again.")
        self.session.flush()
        self.session.expire_all()
        return self.get_task(task.id)

    # Time entries

    @_store_call
    def list_hours(self, task_ids: Optional[List[int]] = None) -> List[HoursEntry]:
        query = self.session.query(models.TaskAssigneeHours, models.Task.project_id).join(
            models.Task, models.Task.id == models.TaskAssigneeHours.task_id
        )
        if task_ids is not None:
            if not task_ids:
                return []
            query = query.filter(models.TaskAssigneeHours.task_id.in_(task_ids))
        rows = query.order_by(models.TaskAssigneeHours.task_id, models.TaskAssigneeHours.user_id).all()
        return [
            HoursEntry(
                task_id=row.task_id,
                user_id=row.user_id,
                hours=float(row.hours or 0),
                project_id=project_id,
                updated_at=row.updated_at,
            )
            for row, project_id in rows
        ]

    @_store_call
    def upsert_hours(self, entry: HoursEntry) -> HoursEntry:
        row = (
            self.session.query(models.TaskAssigneeHours)
            .filter(
                models.TaskAssigneeHours.task_id == entry.task_id,
                models.TaskAssigneeHours.user_id == entry.user_id,
            )
            .first()
        )
        if row is None:
            row = models.TaskAssigneeHours(task_id=entry.task_id, user_id=entry.user_id)
            self.session.add(row)
        row.hours = entry.hours
        self.session.flush()
        return HoursEntry(task_id=row.task_id, user_id=row.user_id, hours=float(row.hours))

    @_store_call
    def delete_hours(self, task_id: int, user_id: int) -> None:
        (
            self.session.query(models.TaskAssigneeHours)
            .filter(
                models.TaskAssigneeHours.task_id == task_id,
                models.TaskAssigneeHours.user_id == user_id,
            )
            .delete(synchronize_session=False)
        )
        self.session.flush()

    # Comments

    @_store_call
    def get_comment(self, comment_id: int) -> Optional[Comment]:
        row = self.session.query(models.Comment).filter(models.Comment.id == comment_id).first()
        return _comment(row) if row else None

    @_store_call
    def list_comments(self, task_id: int) -> List[Comment]:
        rows = (
            self.session.query(models.Comment)
            .filter(models.Comment.task_id == task_id)
            .order_by(models.Comment.id)
            .all()
        )
        return [_comment(row) for row in rows]

    @_store_call
    def upsert_comment(self, comment: Comment) -> Comment:
        row = self.session.get(models.Comment, comment.id) if comment.id is not None else None
        if row is None:
            row = models.Comment(task_id=comment.task_id, user_id=comment.user_id)
            self.session.add(row)
        row.content = comment.content
        row.parent_id = comment.parent_id
        row.edited = comment.edited
        self.session.flush()
        self.session.refresh(row)
        return _comment(row)

    # Notifications

    @_store_call
    def add_notification(self, notification: Notification) -> Notification:
        row = models.Notification(
            notif_type=notification.kind,
            message=notification.message,
            recipient_id=notification.recipient_id,
            creator_id=notification.creator_id,
            project_id=notification.project_id,
            task_id=notification.task_id,
        )
        self.session.add(row)
        self.session.flush()
        self.session.refresh(row)
        return _notification(row)

    @_store_call
    def list_notifications(
        self,
        recipient_id: Optional[int] = None,
        creator_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Notification]:
        query = self.session.query(models.Notification)
        if recipient_id is not None:
            query = query.filter(models.Notification.recipient_id == recipient_id)
        if creator_id is not None:
            query = query.filter(models.Notification.creator_id == creator_id)
        rows = query.order_by(models.Notification.id.desc()).offset(offset).limit(limit).all()
        return [_notification(row) for row in rows]
