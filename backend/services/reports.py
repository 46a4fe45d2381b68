"""
Hours rollups across projects.

Uses the same aggregation as task summaries, grouped by project or by user over
the projects the caller can see.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from auth.permissions import filter_visible_projects
from auth.roles import UserProfile
from entities import Project
from repositories.base import TaskStore
from services.access import load_profile
from time_tracking import summarize_hours

logger = logging.getLogger(__name__)


class ReportService:

    def __init__(self, store: TaskStore):
        self.store = store

    def _visible_projects(self, caller: UserProfile, project_ids: Optional[Iterable[int]]) -> List[Project]:
        projects = self.store.list_projects()
        creator_ids = list({p.creator_id for p in projects if p.creator_id is not None})
        creators = {u.id: UserProfile.from_user(u) for u in self.store.list_users(creator_ids)}
        visible = filter_visible_projects(
            caller, projects, self.store.list_member_project_ids(caller.user_id), creators
        )
        if project_ids is not None:
            wanted = set(project_ids)
            visible = [p for p in visible if p.id in wanted]
        return visible

    def project_hours(self, caller_id: int, project_ids: Optional[Iterable[int]] = None) -> Dict[str, Any]:
        """
        Logged hours per project over the projects visible to the caller.

        Args:
            caller_id: Acting user
            project_ids: Optional subset of projects; ids the caller cannot see are left out

        Returns:
            {"total_hours": float, "per_project": [{"project_id", "project_name", "hours"}]}
        """
        caller = load_profile(self.store, caller_id)
        names = {p.id: p.name for p in self._visible_projects(caller, project_ids)}
        entries = [e for e in self.store.list_hours() if e.project_id in names]
        summary = summarize_hours(entries, key="project_id", include=list(names))
        for row in summary["per_project"]:
            row["project_name"] = names.get(row["project_id"])

        logger.debug(f"Hours report for user {caller_id} covers {len(names)} project(s)")
        return summary

    def user_hours(self, caller_id: int, project_ids: Optional[Iterable[int]] = None) -> Dict[str, Any]:
        """
        Logged hours per user over the projects visible to the caller.

        Only users with logged entries appear.

        Returns:
            {"total_hours": float, "per_assignee": [{"user_id", "user_name", "hours"}]}
        """
        caller = load_profile(self.store, caller_id)
        visible_ids = {p.id for p in self._visible_projects(caller, project_ids)}
        entries = [e for e in self.store.list_hours() if e.project_id in visible_ids]
        summary = summarize_hours(entries, key="user_id")

        user_ids = [row["user_id"] for row in summary["per_assignee"]]
        names = {u.id: u.name for u in self.store.list_users(user_ids)}
        for row in summary["per_assignee"]:
            row["user_name"] = names.get(row["user_id"])

        logger.debug(
            f"Per-user hours report for user {caller_id} covers {len(visible_ids)} project(s), "
            f"{len(user_ids)} user(s)"
        )
        return summary
