"""Demo data for local runs (SEED_DEMO_DATA=true)."""

import logging

from auth.security import hash_password
from entities import HoursEntry, Project, ProjectMember, Task, User
from repositories.base import TaskStore

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "demo1234"

DEMO_USERS = [
    {"name": "Maya Manager", "email": "manager@example.com", "role": "manager", "hierarchy": 3, "division": "Engineering"},
    {"name": "Sam Staff", "email": "staff@example.com", "role": "staff", "hierarchy": 1, "division": "Engineering"},
    {"name": "Hana HR", "email": "hr@example.com", "role": "hr", "hierarchy": 2, "division": "People"},
]


def seed_demo_data(store: TaskStore) -> None:
    """Create demo users and one project with a couple of tasks, once."""
    if store.get_user_by_email(DEMO_USERS[0]["email"]):
        logger.info("Demo data already present")
        return

    password_hash = hash_password(DEMO_PASSWORD)
    with store.transaction():
        users = [
            store.upsert_user(User(id=None, password_hash=password_hash, **data))
            for data in DEMO_USERS
        ]
        manager, staff = users[0], users[1]

        project = store.upsert_project(Project(
            id=None,
            name="Website Relaunch",
            description="Redesign and relaunch the public website",
            creator_id=manager.id,
        ))
        store.upsert_membership(ProjectMember(project_id=project.id, user_id=manager.id, role="creator"))
        store.upsert_membership(ProjectMember(project_id=project.id, user_id=staff.id, role="collaborator"))

        design = store.upsert_task(Task(
            id=None,
            project_id=project.id,
            title="Draft new landing page",
            priority=8,
            status="in_progress",
            assigned_to=[manager.id, staff.id],
            tags=["design"],
        ))
        store.upsert_task(Task(
            id=None,
            project_id=project.id,
            title="Collect stakeholder feedback",
            priority=5,
            assigned_to=[manager.id],
            parent_id=design.id,
        ))
        store.upsert_hours(HoursEntry(task_id=design.id, user_id=manager.id, hours=3))
        store.upsert_hours(HoursEntry(task_id=design.id, user_id=staff.id, hours=2))

    logger.info(f"✅ Demo data created (project ID: {project.id}, password for demo users: {DEMO_PASSWORD})")
