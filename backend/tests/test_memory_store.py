"""
Tests for the in-memory store adapter.

Tests cover:
- Failed transactions restore the previous state
- Transactions on different threads stay isolated
"""

import logging
import threading

import pytest

from entities import Project
from errors import ValidationFailed
from repositories import InMemoryStore

logger = logging.getLogger(__name__)


def _project(name: str) -> Project:
    return Project(id=None, name=name, description="d", creator_id=1)


def test_failed_transaction_restores_state():
    store = InMemoryStore()
    with store.transaction():
        store.upsert_project(_project("Kept"))

    with pytest.raises(ValidationFailed):
        with store.transaction():
            store.upsert_project(_project("Dropped"))
            raise ValidationFailed("stop")

    assert [p.name for p in store.list_projects()] == ["Kept"]


def test_concurrent_transaction_survives_other_thread_rollback():
    """A rollback on one thread must not discard a commit made by another."""
    store = InMemoryStore()
    a_inside = threading.Event()
    release_a = threading.Event()
    errors = []

    def failing_request():
        try:
            with store.transaction():
                store.upsert_project(_project("A"))
                a_inside.set()
                release_a.wait(timeout=5)
                raise ValidationFailed("request A failed")
        except ValidationFailed:
            pass

    def committing_request():
        try:
            with store.transaction():
                store.upsert_project(_project("B"))
        except Exception as e:
            errors.append(e)

    thread_a = threading.Thread(target=failing_request)
    thread_a.start()
    assert a_inside.wait(timeout=5)

    thread_b = threading.Thread(target=committing_request)
    thread_b.start()
    release_a.set()

    thread_a.join(timeout=5)
    thread_b.join(timeout=5)

    assert errors == []
    assert [p.name for p in store.list_projects()] == ["B"]
    logger.info("✓ Rollback on one thread kept the other thread's commit")


def test_nested_transaction_on_same_thread_joins_outer():
    store = InMemoryStore()
    with pytest.raises(ValidationFailed):
        with store.transaction():
            with store.transaction():
                store.upsert_project(_project("Inner"))
            raise ValidationFailed("stop")

    assert store.list_projects() == []
