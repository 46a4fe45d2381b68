from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import List, Optional
import logging
import sys

from config import (
    ADMIN_EMAIL, ADMIN_PASSWORD, CORS_ORIGINS, LOG_LEVEL, SEED_DEMO_DATA, STORE_BACKEND,
    is_production_like,
)
from database import engine, Base
import models  # noqa: F401  (registers tables on Base.metadata)
import schemas
from entities import User
from errors import ServiceError
from repositories import TaskStore, get_store, open_store
from repositories.demo import seed_demo_data
from services.comments import CommentService
from services.notifications import NotificationService
from services.projects import ProjectService
from services.reports import ReportService
from services.tasks import TaskService
from services.users import UserService
from auth.routes import router as auth_router
from auth.dependencies import get_current_user

# Configure logging
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Task Tracker API",
    description="Projects, tasks, memberships and time tracking with role-based access control",
    version="2.0.0"
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register authentication router
app.include_router(auth_router)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Render typed service errors with the status code they carry."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ============== Startup: Ensure Admin User Exists ==============

@app.on_event("startup")
async def ensure_admin_user():
    """
    Ensure admin user exists on startup.

    Uses ADMIN_PASSWORD env var if set, otherwise defaults to 'admin123' for local dev.
    Refuses to start in production with the default or a short password.
    """
    from auth.security import hash_password

    if STORE_BACKEND == "sql":
        # No migrations; create missing tables
        Base.metadata.create_all(bind=engine)

    is_default_password = ADMIN_PASSWORD.strip() == "admin123"
    if is_production_like() and (is_default_password or len(ADMIN_PASSWORD.strip()) < 8):
        logger.error(
            "=" * 80 + "\n"
            "❌ STARTUP FAILED: Secure ADMIN_PASSWORD is required in production/staging!\n"
            "❌ It must not be the default 'admin123' and must be at least 8 characters long.\n"
            "❌ Example: ADMIN_PASSWORD=$(openssl rand -base64 32)\n" +
            "=" * 80
        )
        sys.exit(1)

    try:
        with open_store() as store:
            if store.get_user_by_email(ADMIN_EMAIL):
                logger.info(f"Admin user already exists (email: {ADMIN_EMAIL})")
            else:
                with store.transaction():
                    admin = store.upsert_user(User(
                        id=None,
                        name="Admin",
                        email=ADMIN_EMAIL,
                        role="admin",
                        hierarchy=10,
                        password_hash=hash_password(ADMIN_PASSWORD),
                    ))
                if is_default_password:
                    logger.warning(
                        "=" * 80 + "\n"
                        "⚠️  SECURITY WARNING: Admin user created with DEFAULT password 'admin123'\n"
                        "⚠️  This is OK for local development but DANGEROUS for production!\n"
                        "⚠️  Set ADMIN_PASSWORD environment variable to use a custom password.\n" +
                        "=" * 80
                    )
                else:
                    logger.info(f"✅ Admin user created (ID: {admin.id}) with password from ADMIN_PASSWORD")

            if SEED_DEMO_DATA:
                seed_demo_data(store)
    except ServiceError as e:
        # Don't fail startup - let the app run even if admin creation fails
        logger.error(f"Failed to ensure admin user exists: {e.message}")


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "store": STORE_BACKEND}


# ============== Users ==============

@app.get("/api/users", response_model=List[schemas.UserSummary])
def list_users(
    search: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """Search active users by name or email, for picking members and assignees."""
    return UserService(store).search_users(current_user.id, search, limit)


# ============== Projects ==============

@app.get("/api/projects", response_model=List[schemas.Project])
def list_projects(
    status_filter: Optional[str] = Query(None, alias="status"),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: Optional[str] = Query(None, alias="sortOrder"),
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """List projects visible to the current user."""
    logger.debug(f"User {current_user.id} listing projects")
    return ProjectService(store).list_projects(current_user.id, status_filter, sort_by, sort_order)


@app.post("/api/projects", response_model=schemas.Project, status_code=status.HTTP_201_CREATED)
def create_project(
    project: schemas.ProjectCreate,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """Create a project (managers and admins). The caller becomes its creator."""
    return ProjectService(store).create_project(project.model_dump(), current_user.id)


@app.get("/api/projects/{project_id}", response_model=schemas.Project)
def get_project(
    project_id: int,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    return ProjectService(store).get_project(project_id, current_user.id)


@app.put("/api/projects/{project_id}", response_model=schemas.Project)
def update_project(
    project_id: int,
    project_update: schemas.ProjectUpdate,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """Update name, description or status. Setting status to archived archives the project."""
    patch = project_update.model_dump(exclude_unset=True)
    return ProjectService(store).update_project(project_id, patch, current_user.id)


@app.patch("/api/projects/{project_id}/archive", response_model=schemas.Project)
def archive_project(
    project_id: int,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """Archive a project and all of its tasks (creator or admin)."""
    return ProjectService(store).archive_project(project_id, current_user.id)


@app.get("/api/projects/{project_id}/stats", response_model=schemas.ProjectStats)
def get_project_stats(
    project_id: int,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    return ProjectService(store).get_project_stats(project_id, current_user.id)


# ============== Project Members ==============

@app.get("/api/projects/{project_id}/members", response_model=List[schemas.Member])
def list_project_members(
    project_id: int,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    return ProjectService(store).list_members(project_id, current_user.id)


@app.get("/api/projects/{project_id}/assignable-users", response_model=List[schemas.UserSummary])
def list_assignable_users(
    project_id: int,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """List project members who can be assigned the project's tasks."""
    logger.debug(f"User {current_user.id} listing assignable users for project {project_id}")
    return ProjectService(store).list_assignable_users(project_id, current_user.id)


@app.post("/api/projects/{project_id}/members", response_model=List[schemas.Member])
def add_project_members(
    project_id: int,
    members: schemas.MembersAdd,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """Add users to a project. Existing members are skipped."""
    return ProjectService(store).add_users_to_project(
        project_id, members.user_ids, current_user.id, members.message, members.role
    )


@app.delete("/api/projects/{project_id}/members/{user_id}", response_model=List[schemas.Member])
def remove_project_member(
    project_id: int,
    user_id: int,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """Remove a member. The project creator cannot be removed."""
    return ProjectService(store).remove_user_from_project(project_id, user_id, current_user.id)


# ============== Tasks ==============

@app.get("/api/projects/{project_id}/tasks", response_model=schemas.TaskList)
def list_project_tasks(
    project_id: int,
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: Optional[str] = Query(None, alias="sortOrder"),
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = Query(None),
    assigned_to: Optional[str] = Query(None, alias="assignedTo"),
    archived: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """List a project's tasks with filtering, sorting and pagination."""
    filters = {
        "status": status_filter,
        "priority": priority,
        "assigned_to": assigned_to,
        "archived": archived,
    }
    return TaskService(store).list_project_tasks(
        project_id, current_user.id, filters, sort_by, sort_order, page, limit
    )


@app.post("/api/projects/{project_id}/tasks", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def create_task(
    project_id: int,
    task: schemas.TaskCreate,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """Create a task in an active project. The creator is always assigned."""
    return TaskService(store).create_task(project_id, task.model_dump(), current_user.id)


@app.get("/api/tasks/{task_id}", response_model=schemas.Task)
def get_task(
    task_id: int,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    return TaskService(store).get_task(task_id, current_user.id)


@app.put("/api/tasks/{task_id}", response_model=schemas.Task)
def update_task(
    task_id: int,
    task_update: schemas.TaskUpdate,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """
    Update a task.

    Only fields present in the body are changed. "hours" records the caller's
    own logged hours; "version" makes the update conditional on the stored version.
    """
    patch = task_update.model_dump(exclude_unset=True)
    return TaskService(store).update_task(task_id, patch, current_user.id)


@app.get("/api/tasks/{task_id}/subtasks", response_model=List[schemas.Task])
def list_subtasks(
    task_id: int,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    return TaskService(store).list_subtasks(task_id, current_user.id)


@app.get("/api/tasks/{task_id}/hours", response_model=schemas.TaskHours)
def get_task_hours(
    task_id: int,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """Per-assignee hours breakdown for a task."""
    return TaskService(store).get_task_hours(task_id, current_user.id)


# ============== Comments ==============

@app.get("/api/tasks/{task_id}/comments", response_model=List[schemas.CommentThread])
def list_comments(
    task_id: int,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    return CommentService(store).list_thread(task_id, current_user.id)


@app.post("/api/tasks/{task_id}/comments", response_model=schemas.Comment, status_code=status.HTTP_201_CREATED)
def add_comment(
    task_id: int,
    comment: schemas.CommentCreate,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    return CommentService(store).add_comment(task_id, current_user.id, comment.content, comment.parent_id)


@app.put("/api/comments/{comment_id}", response_model=schemas.Comment)
def edit_comment(
    comment_id: int,
    comment: schemas.CommentUpdate,
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """Edit a comment (author only)."""
    return CommentService(store).edit_comment(comment_id, current_user.id, comment.content)


# ============== Reports ==============

@app.get("/api/reports/hours", response_model=schemas.ProjectHoursReport)
def project_hours_report(
    project_ids: Optional[List[int]] = Query(None, alias="projectId"),
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """Logged hours per project across the projects visible to the current user."""
    return ReportService(store).project_hours(current_user.id, project_ids)


@app.get("/api/reports/hours/by-user", response_model=schemas.UserHoursReport)
def user_hours_report(
    project_ids: Optional[List[int]] = Query(None, alias="projectId"),
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """Logged hours per user across the projects visible to the current user."""
    return ReportService(store).user_hours(current_user.id, project_ids)


# ============== Notifications ==============

@app.get("/api/notifications", response_model=schemas.NotificationList)
def list_notifications(
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """Invitation and comment notifications addressed to the current user, newest first."""
    return NotificationService(store).list_received(current_user.id, limit, offset)


@app.get("/api/notifications/created", response_model=schemas.NotificationList)
def list_created_notifications(
    limit: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    store: TaskStore = Depends(get_store),
):
    """Notifications the current user's invitations and comments produced."""
    return NotificationService(store).list_sent(current_user.id, limit, offset)
