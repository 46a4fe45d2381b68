"""
Task comment threads.

Threads are one level deep: a reply must point at a top-level comment of the
same task. Comments are edited by their author only and never deleted. A new comment
notifies the task's other assignees.
"""

import logging
from dataclasses import asdict, replace
from typing import Any, Dict, List, Optional

from auth.roles import GlobalRole, UserProfile
from entities import Comment, Task
from errors import NotFound, PermissionDenied, ValidationFailed
from repositories.base import TaskStore
from services.access import (
    ensure_not_archived, load_profile, manages_any_assignee, require_project, require_task,
)
from services.notifications import NotificationService

logger = logging.getLogger(__name__)


class CommentService:

    def __init__(self, store: TaskStore):
        self.store = store

    def _can_comment(self, caller: UserProfile, task: Task) -> bool:
        if caller.global_role in (GlobalRole.ADMIN, GlobalRole.HR):
            return True
        if caller.user_id in task.assigned_to:
            return True
        if self.store.get_project_membership(task.project_id, caller.user_id) is not None:
            return True
        return manages_any_assignee(self.store, caller, task)

    def _require_access(self, caller: UserProfile, task: Task) -> None:
        if not self._can_comment(caller, task):
            logger.info(f"User {caller.user_id} denied access to comments of task {task.id}")
            raise PermissionDenied("You do not have permission to comment on this task")

    def add_comment(
        self, task_id: int, caller_id: int, content: Any, parent_id: Optional[int] = None
    ) -> Dict[str, Any]:
        caller = load_profile(self.store, caller_id)
        task = require_task(self.store, task_id)
        project = require_project(self.store, task.project_id)
        self._require_access(caller, task)
        ensure_not_archived(project)

        text = content.strip() if isinstance(content, str) else ""
        if not text:
            raise ValidationFailed("Comment content is required")

        if parent_id is not None:
            parent = self.store.get_comment(parent_id)
            if parent is None or parent.task_id != task_id:
                raise NotFound("Parent comment not found")
            if parent.parent_id is not None:
                raise ValidationFailed("Replies can only be added to top-level comments")

        with self.store.transaction():
            comment = self.store.upsert_comment(Comment(
                id=None, task_id=task_id, user_id=caller_id, content=text, parent_id=parent_id,
            ))
            NotificationService(self.store).notify_comment(task, comment)
        logger.info(f"Comment {comment.id} added to task {task_id} by user {caller_id}")
        return self._view(comment)

    def edit_comment(self, comment_id: int, caller_id: int, content: Any) -> Dict[str, Any]:
        load_profile(self.store, caller_id)
        comment = self.store.get_comment(comment_id)
        if comment is None:
            raise NotFound("Comment not found")
        if comment.user_id != caller_id:
            logger.info(f"User {caller_id} attempted to edit comment {comment_id} by user {comment.user_id}")
            raise PermissionDenied("Only the original author can edit this comment")

        task = require_task(self.store, comment.task_id)
        ensure_not_archived(require_project(self.store, task.project_id))

        text = content.strip() if isinstance(content, str) else ""
        if not text:
            raise ValidationFailed("Comment content is required")

        with self.store.transaction():
            comment = self.store.upsert_comment(replace(comment, content=text, edited=True))
        logger.info(f"Comment {comment_id} edited by user {caller_id}")
        return self._view(comment)

    def list_thread(self, task_id: int, caller_id: int) -> List[Dict[str, Any]]:
        """Top-level comments newest first, each with its replies oldest first."""
        caller = load_profile(self.store, caller_id)
        task = require_task(self.store, task_id)
        self._require_access(caller, task)

        comments = self.store.list_comments(task_id)
        authors = {u.id: u.name for u in self.store.list_users(list({c.user_id for c in comments}))}

        replies: Dict[int, List[Dict[str, Any]]] = {}
        for comment in comments:
            if comment.parent_id is not None:
                replies.setdefault(comment.parent_id, []).append(self._view(comment, authors))

        roots = [c for c in comments if c.parent_id is None]
        roots.sort(key=lambda c: (c.created_at, c.id), reverse=True)
        thread = []
        for root in roots:
            view = self._view(root, authors)
            view["replies"] = sorted(replies.get(root.id, []), key=lambda r: (r["created_at"], r["id"]))
            thread.append(view)
        return thread

    def _view(self, comment: Comment, authors: Optional[Dict[int, str]] = None) -> Dict[str, Any]:
        data = asdict(comment)
        if authors is None:
            author = self.store.get_user(comment.user_id)
            data["author_name"] = author.name if author else None
        else:
            data["author_name"] = authors.get(comment.user_id)
        return data
