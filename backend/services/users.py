"""
User directory used to pick members and assignees.
"""

import logging
from typing import Any, Dict, List, Optional

from entities import User
from errors import ValidationFailed
from repositories.base import TaskStore
from services.access import load_profile

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 8
MAX_DIRECTORY_LIMIT = 100


def user_summary(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "division": user.division,
        "department": user.department,
    }


class UserService:

    def __init__(self, store: TaskStore):
        self.store = store

    def search_users(self, caller_id: int, search: Optional[str] = None, limit: Any = None) -> List[Dict[str, Any]]:
        """
        Active users matching search by name or email, ordered by name.

        Without a search term the whole directory is listed, up to the limit.
        """
        load_profile(self.store, caller_id)
        term = (search or "").strip()
        default = SEARCH_LIMIT if term else MAX_DIRECTORY_LIMIT
        if limit is None or limit == "":
            page_size = default
        else:
            try:
                page_size = int(limit)
            except (TypeError, ValueError):
                raise ValidationFailed("Limit must be a positive integer")
            if isinstance(limit, bool) or page_size < 1:
                raise ValidationFailed("Limit must be a positive integer")
        page_size = min(page_size, MAX_DIRECTORY_LIMIT)

        users = self.store.search_users(term, page_size)
        logger.debug(f"User {caller_id} searched the directory for '{term}': {len(users)} match(es)")
        return [user_summary(user) for user in users]
