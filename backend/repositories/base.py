"""
Store port used by the service layer.

Services only talk to a TaskStore; SqlAlchemyStore and InMemoryStore are the
two adapters. Every read returns fresh entities, and nothing is cached across
requests.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from entities import Comment, HoursEntry, Notification, Project, ProjectMember, Task, User


class TaskStore(ABC):

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """All-or-nothing block: writes inside it persist only if it exits cleanly."""
        yield

    # Users

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[User]:
        pass

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[User]:
        pass

    @abstractmethod
    def list_users(self, user_ids: Optional[List[int]] = None) -> List[User]:
        """All users, or only those with the given ids."""
        pass

    @abstractmethod
    def search_users(self, query: str, limit: int) -> List[User]:
        """Active users whose name or email contains query (case-insensitive), ordered by name."""
        pass

    @abstractmethod
    def upsert_user(self, user: User) -> User:
        pass

    # Projects and memberships

    @abstractmethod
    def get_project(self, project_id: int) -> Optional[Project]:
        pass

    @abstractmethod
    def list_projects(self, status: Optional[str] = None) -> List[Project]:
        pass

    @abstractmethod
    def upsert_project(self, project: Project) -> Project:
        """Insert (when id is None) or update a project and return it with its id."""
        pass

    @abstractmethod
    def get_project_membership(self, project_id: int, user_id: int) -> Optional[ProjectMember]:
        pass

    @abstractmethod
    def list_members(self, project_id: int) -> List[ProjectMember]:
        pass

    @abstractmethod
    def list_member_project_ids(self, user_id: int) -> List[int]:
        pass

    @abstractmethod
    def upsert_membership(self, membership: ProjectMember) -> ProjectMember:
        pass

    @abstractmethod
    def delete_membership(self, project_id: int, user_id: int) -> None:
        pass

    # Tasks

    @abstractmethod
    def get_task(self, task_id: int) -> Optional[Task]:
        pass

    @abstractmethod
    def list_tasks_for_project(self, project_id: int, filters: Optional[Dict[str, Any]] = None) -> List[Task]:
        """
        Tasks of a project, optionally filtered.

        Supported filters: status, priority, assigned_to (single user id),
        archived (bool), top_level_only (bool).
        """
        pass

    @abstractmethod
    def list_subtasks(self, parent_id: int) -> List[Task]:
        pass

    @abstractmethod
    def upsert_task(self, task: Task, expected_version: Optional[int] = None) -> Task:
        """
        Insert or update a task and bump its version.

        When expected_version is given the write only happens if the stored
        version still matches, otherwise ConcurrentModification is raised.
        """
        pass

    # Time entries

    @abstractmethod
    def list_hours(self, task_ids: Optional[List[int]] = None) -> List[HoursEntry]:
        """Hours rows (with project_id filled in), optionally limited to some tasks."""
        pass

    @abstractmethod
    def upsert_hours(self, entry: HoursEntry) -> HoursEntry:
        """Set the hours of one (task, user) pair."""
        pass

    @abstractmethod
    def delete_hours(self, task_id: int, user_id: int) -> None:
        pass

    # Comments

    @abstractmethod
    def get_comment(self, comment_id: int) -> Optional[Comment]:
        pass

    @abstractmethod
    def list_comments(self, task_id: int) -> List[Comment]:
        pass

    @abstractmethod
    def upsert_comment(self, comment: Comment) -> Comment:
        pass

    # Notifications

    @abstractmethod
    def add_notification(self, notification: Notification) -> Notification:
        pass

    @abstractmethod
    def list_notifications(
        self,
        recipient_id: Optional[int] = None,
        creator_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Notification]:
        """Notifications for a recipient or from a creator, newest first."""
        pass
