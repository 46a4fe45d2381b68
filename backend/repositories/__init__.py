"""
Store selection.

STORE_BACKEND picks the adapter explicitly: "sql" opens a SQLAlchemy session per
request, "memory" shares one InMemoryStore for the lifetime of the process.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from config import STORE_BACKEND
from database import SessionLocal
from repositories.base import TaskStore
from repositories.memory_store import InMemoryStore
from repositories.sql_store import SqlAlchemyStore

logger = logging.getLogger(__name__)

__all__ = ["TaskStore", "InMemoryStore", "SqlAlchemyStore", "get_store", "get_memory_store", "open_store"]

_memory_store: Optional[InMemoryStore] = None
_memory_store_lock = threading.Lock()


def get_memory_store() -> InMemoryStore:
    """Process-wide InMemoryStore, created on first use."""
    global _memory_store
    with _memory_store_lock:
        if _memory_store is None:
            logger.info("Using in-memory store")
            _memory_store = InMemoryStore()
    return _memory_store


def get_store() -> Iterator[TaskStore]:
    """
    FastAPI dependency yielding the configured store.

    Yields:
        TaskStore: a SqlAlchemyStore bound to a fresh session, or the shared InMemoryStore
    """
    if STORE_BACKEND == "memory":
        yield get_memory_store()
        return

    db = SessionLocal()
    try:
        yield SqlAlchemyStore(db)
    finally:
        db.close()


# Same store lifecycle outside a request (startup hooks, scripts)
open_store = contextmanager(get_store)
