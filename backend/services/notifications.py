"""
In-app notifications for project invitations and task comments.

Notifications are written inside the caller's transaction, so an invitation or
comment that fails to persist never leaves a notification behind.
"""

import logging
from dataclasses import asdict
from typing import Any, Dict, Iterable, List, Optional

from entities import Comment, Notification, Project, Task
from errors import ValidationFailed
from repositories.base import TaskStore
from services.access import load_profile

logger = logging.getLogger(__name__)

INVITATION = "invitation"
COMMENT = "comment"

DEFAULT_NOTIFICATION_LIMIT = 50
MAX_NOTIFICATION_LIMIT = 100
COMMENT_PREVIEW_LENGTH = 100


def comment_preview(content: str) -> str:
    if len(content) > COMMENT_PREVIEW_LENGTH:
        return content[:COMMENT_PREVIEW_LENGTH] + "..."
    return content


def _bounded_int(value: Any, default: int, minimum: int, name: str) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationFailed(f"{name} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"{name} must be an integer")
    if number < minimum:
        raise ValidationFailed(f"{name} must be at least {minimum}")
    return number


class NotificationService:

    def __init__(self, store: TaskStore):
        self.store = store

    def notify_project_invitation(
        self,
        project: Project,
        invited_ids: Iterable[int],
        inviter_id: int,
        role: str,
        custom_message: Optional[str] = None,
    ) -> List[Notification]:
        """Tell each newly added member who invited them, with the optional personal message."""
        inviter = self.store.get_user(inviter_id)
        inviter_name = inviter.name if inviter else "Someone"

        message = f'{inviter_name} has invited you to join the project "{project.name}" as a {role}.'
        if custom_message and custom_message.strip():
            message += f"\n\nMessage: {custom_message.strip()}"
        message += "\n\nYou can now start contributing to the project immediately."

        created = []
        with self.store.transaction():
            for user_id in invited_ids:
                created.append(self.store.add_notification(Notification(
                    id=None,
                    kind=INVITATION,
                    message=message,
                    recipient_id=user_id,
                    creator_id=inviter_id,
                    project_id=project.id,
                )))
        logger.debug(f"Created {len(created)} invitation notification(s) for project {project.id}")
        return created

    def notify_comment(self, task: Task, comment: Comment) -> List[Notification]:
        """Notify the task's assignees, except the commenter, about a new comment."""
        recipients = [user_id for user_id in task.assigned_to if user_id != comment.user_id]
        if not recipients:
            logger.debug(f"No one to notify about comment {comment.id} on task {task.id}")
            return []

        commenter = self.store.get_user(comment.user_id)
        commenter_name = commenter.name if commenter else "Someone"
        message = f'{commenter_name} commented on "{task.title}": "{comment_preview(comment.content)}"'

        known = {user.id for user in self.store.list_users(recipients)}
        created = []
        with self.store.transaction():
            for user_id in recipients:
                if user_id not in known:
                    continue
                created.append(self.store.add_notification(Notification(
                    id=None,
                    kind=COMMENT,
                    message=message,
                    recipient_id=user_id,
                    creator_id=comment.user_id,
                    project_id=task.project_id,
                    task_id=task.id,
                )))
        logger.info(f"Created {len(created)} comment notification(s) for task {task.id}")
        return created

    def list_received(self, caller_id: int, limit: Any = None, offset: Any = None) -> Dict[str, Any]:
        """Notifications addressed to the caller, newest first."""
        load_profile(self.store, caller_id)
        return self._page(caller_id, None, limit, offset)

    def list_sent(self, caller_id: int, limit: Any = None, offset: Any = None) -> Dict[str, Any]:
        """Notifications triggered by the caller's own invitations and comments."""
        load_profile(self.store, caller_id)
        return self._page(None, caller_id, limit, offset)

    def _page(
        self, recipient_id: Optional[int], creator_id: Optional[int], limit: Any, offset: Any
    ) -> Dict[str, Any]:
        page_size = min(_bounded_int(limit, DEFAULT_NOTIFICATION_LIMIT, 1, "Limit"), MAX_NOTIFICATION_LIMIT)
        skip = _bounded_int(offset, 0, 0, "Offset")
        notifications = self.store.list_notifications(
            recipient_id=recipient_id, creator_id=creator_id, limit=page_size, offset=skip
        )
        return {
            "notifications": [asdict(n) for n in notifications],
            "pagination": {"limit": page_size, "offset": skip},
        }
