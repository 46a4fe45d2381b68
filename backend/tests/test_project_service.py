"""
Tests for ProjectService against the in-memory store.

Tests cover:
- Project creation (role check, required fields, creator membership)
- Visibility and listing
- Adding and removing members (creator protection, assignee invariant)
- Archive cascade, atomicity and read-only archived projects
- Project statistics
"""

import logging
from dataclasses import replace

import pytest

from entities import Task
from errors import NotFound, PermissionDenied, ServiceFailure, ValidationFailed
from repositories import InMemoryStore
from services.projects import ProjectService
from services.tasks import TaskService
from tests.conftest import create_user

logger = logging.getLogger(__name__)


@pytest.fixture
def projects(memory_store):
    return ProjectService(memory_store)


@pytest.fixture
def tasks(memory_store):
    return TaskService(memory_store)


@pytest.fixture
def project(projects, people):
    """Active project created by the manager with staff as collaborator."""
    return projects.create_project(
        {"name": "Launch", "description": "Launch plan", "user_ids": [people.staff.id]},
        people.manager.id,
    )


def _snapshot(store: InMemoryStore):
    return (
        dict(store._projects), dict(store._members), {k: replace(v) for k, v in store._tasks.items()},
        dict(store._hours),
    )


# ============== Creation ==============


def test_create_project_makes_creator_member(projects, people, memory_store):
    created = projects.create_project({"name": " Alpha ", "description": "First"}, people.manager.id)

    assert created["name"] == "Alpha"
    assert created["status"] == "active"
    assert created["creator_id"] == people.manager.id
    assert created["task_count"] == 0
    membership = memory_store.get_project_membership(created["id"], people.manager.id)
    assert membership.role == "creator"
    logger.info("✓ Creator membership created with the project")


def test_create_project_adds_collaborators(project, memory_store, people):
    members = {m.user_id: m.role for m in memory_store.list_members(project["id"])}
    assert members == {people.manager.id: "creator", people.staff.id: "collaborator"}


def test_create_project_requires_manager_role(projects, people):
    with pytest.raises(PermissionDenied) as exc:
        projects.create_project({"name": "X", "description": "Y"}, people.staff.id)
    assert exc.value.message == "insufficient role"


@pytest.mark.parametrize("data", [{"name": "X"}, {"description": "Y"}, {"name": "  ", "description": "Y"}])
def test_create_project_requires_name_and_description(projects, people, data):
    with pytest.raises(ValidationFailed) as exc:
        projects.create_project(data, people.admin.id)
    assert exc.value.message == "Missing required fields: name and description are required"


def test_create_project_unknown_collaborator(projects, people, memory_store):
    with pytest.raises(NotFound):
        projects.create_project({"name": "X", "description": "Y", "user_ids": [999]}, people.manager.id)
    assert memory_store.list_projects() == []


# ============== Visibility ==============


def test_get_project_visibility(projects, project, people):
    assert projects.get_project(project["id"], people.staff.id)["id"] == project["id"]
    assert projects.get_project(project["id"], people.hr.id)["id"] == project["id"]
    with pytest.raises(PermissionDenied):
        projects.get_project(project["id"], people.another.id)
    with pytest.raises(NotFound):
        projects.get_project(999, people.admin.id)


def test_manager_sees_subordinates_projects(projects, people, memory_store):
    memory_store.upsert_user(replace(people.staff, role="manager", hierarchy=2))
    staff_project = projects.create_project({"name": "Side", "description": "d"}, people.staff.id)

    visible = [p["id"] for p in projects.list_projects(people.manager.id)]
    assert staff_project["id"] in visible
    assert [p["id"] for p in projects.list_projects(people.outsider.id)] == []


def test_list_projects_filters_and_sorts(projects, people):
    projects.create_project({"name": "Bravo", "description": "d"}, people.manager.id)
    projects.create_project({"name": "Alpha", "description": "d"}, people.manager.id)

    names = [p["name"] for p in projects.list_projects(people.manager.id, sort_by="name", sort_order="asc")]
    assert names == ["Alpha", "Bravo"]
    assert projects.list_projects(people.manager.id, status="archived") == []
    with pytest.raises(ValidationFailed):
        projects.list_projects(people.manager.id, sort_by="creator_id")


# ============== Update ==============


def test_update_project(projects, project, people):
    updated = projects.update_project(project["id"], {"name": "Renamed", "status": "hold"}, people.manager.id)
    assert updated["name"] == "Renamed"
    assert updated["status"] == "hold"


def test_update_project_requires_edit_permission(projects, project, people):
    with pytest.raises(PermissionDenied) as exc:
        projects.update_project(project["id"], {"name": "Nope"}, people.staff.id)
    assert exc.value.message == "insufficient permission"


def test_update_project_invalid_status(projects, project, people):
    with pytest.raises(ValidationFailed):
        projects.update_project(project["id"], {"status": "paused"}, people.manager.id)


def test_update_project_to_archived_runs_cascade(projects, tasks, project, people, memory_store):
    task = tasks.create_task(project["id"], {"title": "T"}, people.manager.id)
    projects.update_project(project["id"], {"status": "archived"}, people.manager.id)
    assert memory_store.get_task(task["id"]).archived is True


# ============== Members ==============


def test_add_users_skips_existing_members(projects, project, people):
    members = projects.add_users_to_project(
        project["id"], [people.staff.id, people.another.id, people.another.id], people.manager.id,
        message="Welcome aboard",
    )
    roles = {m["user_id"]: m["role"] for m in members}
    assert roles == {
        people.manager.id: "creator",
        people.staff.id: "collaborator",
        people.another.id: "collaborator",
    }


def test_add_users_with_manager_role(projects, project, people):
    members = projects.add_users_to_project(project["id"], [people.another.id], people.manager.id, role="Manager")
    assert {m["user_id"]: m["role"] for m in members}[people.another.id] == "manager"


def test_add_users_rejects_creator_role(projects, project, people):
    with pytest.raises(ValidationFailed):
        projects.add_users_to_project(project["id"], [people.another.id], people.manager.id, role="creator")


def test_add_users_rejects_invalid_role(projects, project, people):
    with pytest.raises(ValidationFailed) as exc:
        projects.add_users_to_project(project["id"], [people.another.id], people.manager.id, role="owner")
    assert "Invalid role" in exc.value.message


def test_add_users_unknown_user(projects, project, people):
    with pytest.raises(NotFound):
        projects.add_users_to_project(project["id"], [people.another.id, 999], people.manager.id)


def test_collaborator_cannot_add_users(projects, project, people):
    with pytest.raises(PermissionDenied):
        projects.add_users_to_project(project["id"], [people.another.id], people.staff.id)


def test_remove_user_strips_task_assignments(projects, tasks, project, people, memory_store):
    task = tasks.create_task(
        project["id"], {"title": "Shared", "assigned_to": [people.staff.id]}, people.manager.id
    )
    members = projects.remove_user_from_project(project["id"], people.staff.id, people.manager.id)

    assert [m["user_id"] for m in members] == [people.manager.id]
    assert memory_store.get_task(task["id"]).assigned_to == [people.manager.id]


def test_remove_user_rejected_when_task_would_have_no_assignee(projects, tasks, project, people, memory_store):
    task = tasks.create_task(project["id"], {"title": "Solo"}, people.staff.id)
    assert task["assigned_to"] == [people.staff.id]
    before = _snapshot(memory_store)

    with pytest.raises(ValidationFailed) as exc:
        projects.remove_user_from_project(project["id"], people.staff.id, people.manager.id)
    assert "without an assignee" in exc.value.message
    assert _snapshot(memory_store) == before


@pytest.mark.parametrize("caller", ["manager", "admin"])
def test_creator_can_never_be_removed(projects, project, people, caller):
    with pytest.raises(ValidationFailed) as exc:
        projects.remove_user_from_project(project["id"], people.manager.id, getattr(people, caller).id)
    assert exc.value.message == "Cannot remove the project creator"


def test_remove_non_member(projects, project, people):
    with pytest.raises(NotFound):
        projects.remove_user_from_project(project["id"], people.another.id, people.manager.id)


# ============== Archive ==============


def test_archive_cascades_to_tasks(projects, tasks, project, people, memory_store):
    first = tasks.create_task(project["id"], {"title": "One"}, people.manager.id)
    second = tasks.create_task(project["id"], {"title": "Two", "parent_id": first["id"]}, people.staff.id)

    archived = projects.archive_project(project["id"], people.manager.id)

    assert archived["status"] == "archived"
    assert memory_store.get_project(project["id"]).status == "archived"
    assert memory_store.get_task(first["id"]).archived is True
    assert memory_store.get_task(second["id"]).archived is True
    logger.info("✓ Archive cascaded to every task")


def test_archive_requires_creator_or_admin(projects, project, people):
    projects.add_users_to_project(project["id"], [people.another.id], people.manager.id, role="manager")
    with pytest.raises(PermissionDenied) as exc:
        projects.archive_project(project["id"], people.another.id)
    assert exc.value.message == "insufficient permission"
    assert projects.archive_project(project["id"], people.admin.id)["status"] == "archived"


def test_archive_twice_is_rejected(projects, project, people):
    projects.archive_project(project["id"], people.manager.id)
    with pytest.raises(ValidationFailed):
        projects.archive_project(project["id"], people.manager.id)


class FailingTaskWrites(InMemoryStore):
    """Store whose task writes fail after the first one."""

    def __init__(self):
        super().__init__()
        self.fail_task_writes = False
        self.task_writes = 0

    def upsert_task(self, task: Task, expected_version=None) -> Task:
        if self.fail_task_writes:
            self.task_writes += 1
            if self.task_writes > 1:
                raise ServiceFailure("connection lost")
        return super().upsert_task(task, expected_version)


def test_archive_is_all_or_nothing():
    store = FailingTaskWrites()
    manager = create_user(store, "M", "m@test.com", "manager", 3)
    service = ProjectService(store)
    project = service.create_project({"name": "P", "description": "d"}, manager.id)
    for title in ("a", "b", "c"):
        TaskService(store).create_task(project["id"], {"title": title}, manager.id)

    store.fail_task_writes = True
    with pytest.raises(ServiceFailure):
        service.archive_project(project["id"], manager.id)

    assert store.get_project(project["id"]).status == "active"
    assert [t.archived for t in store.list_tasks_for_project(project["id"])] == [False, False, False]
    logger.info("✓ Failed cascade left nothing archived")


def test_archived_project_rejects_every_mutation(projects, tasks, project, people, memory_store):
    task = tasks.create_task(project["id"], {"title": "T"}, people.manager.id)
    projects.archive_project(project["id"], people.manager.id)
    before = _snapshot(memory_store)

    attempts = [
        lambda: tasks.create_task(project["id"], {"title": "New"}, people.manager.id),
        lambda: tasks.update_task(task["id"], {"title": "Changed"}, people.manager.id),
        lambda: tasks.update_task(task["id"], {"hours": 2}, people.manager.id),
        lambda: projects.add_users_to_project(project["id"], [people.another.id], people.manager.id),
        lambda: projects.remove_user_from_project(project["id"], people.staff.id, people.manager.id),
        lambda: projects.update_project(project["id"], {"name": "Renamed"}, people.manager.id),
    ]
    for attempt in attempts:
        with pytest.raises(ValidationFailed):
            attempt()

    assert _snapshot(memory_store) == before


# ============== Stats ==============


def test_project_stats(projects, tasks, project, people):
    tasks.create_task(project["id"], {"title": "A", "status": "completed", "priority": "high"}, people.manager.id)
    tasks.create_task(project["id"], {"title": "B", "priority": 3, "deadline": "2000-01-01T00:00:00Z"}, people.manager.id)
    tasks.create_task(
        project["id"], {"title": "C", "status": "completed", "deadline": "2000-01-01T00:00:00Z"}, people.manager.id
    )

    stats = projects.get_project_stats(project["id"], people.staff.id)
    assert stats["total"] == 3
    assert stats["by_status"]["completed"] == 2
    assert stats["by_status"]["pending"] == 1
    assert stats["by_priority"] == {3: 1, 5: 1, 10: 1}
    assert stats["overdue"] == 1
    assert stats["completion_rate"] == 66.7
