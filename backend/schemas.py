from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from enum import Enum


class TaskStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    blocked = "blocked"


class ProjectStatus(str, Enum):
    active = "active"
    hold = "hold"
    completed = "completed"
    archived = "archived"


class MemberRole(str, Enum):
    creator = "creator"
    manager = "manager"
    collaborator = "collaborator"


# Time tracking schemas
class AssigneeHours(BaseModel):
    user_id: int
    hours: float


class TimeSummary(BaseModel):
    total_hours: float = 0
    per_assignee: List[AssigneeHours] = Field(default_factory=list)


class TaskHours(TimeSummary):
    task_id: int


class ProjectHours(BaseModel):
    project_id: int
    project_name: Optional[str] = None
    hours: float


class ProjectHoursReport(BaseModel):
    total_hours: float = 0
    per_project: List[ProjectHours] = Field(default_factory=list)


class UserHours(AssigneeHours):
    user_name: Optional[str] = None


class UserHoursReport(BaseModel):
    total_hours: float = 0
    per_assignee: List[UserHours] = Field(default_factory=list)


# Task schemas
# Priority, status, deadline and assignees are accepted loosely here and
# normalized by validation.py, so legacy values ("high", "5") keep working and
# rejections carry the same messages as every other rule.
class TaskCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[Union[int, float, str]] = None
    status: Optional[str] = None
    deadline: Optional[str] = None
    assigned_to: Optional[List[Union[int, str]]] = None
    tags: Optional[Union[List[str], str]] = None
    parent_id: Optional[int] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[Union[int, float, str]] = None
    status: Optional[str] = None
    deadline: Optional[str] = None
    assigned_to: Optional[List[Union[int, str]]] = None
    tags: Optional[Union[List[str], str]] = None
    archived: Optional[bool] = None
    project_id: Optional[int] = None
    # Caller's own logged hours; invalid values are neutralized to 0
    hours: Optional[Any] = None
    # Expected version for compare-and-swap updates
    version: Optional[int] = None


class Task(BaseModel):
    id: int
    project_id: int
    title: str
    description: Optional[str] = None
    priority: int
    status: TaskStatus
    deadline: Optional[datetime] = None
    assigned_to: List[int] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    parent_id: Optional[int] = None
    archived: bool = False
    version: int = 0
    is_overdue: bool = False
    time_tracking: Optional[TimeSummary] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class TaskList(BaseModel):
    tasks: List[Task] = Field(default_factory=list)
    pagination: Pagination
    filters: Dict[str, Any] = Field(default_factory=dict)
    sorting: Dict[str, str] = Field(default_factory=dict)


# Project schemas
class ProjectCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    user_ids: Optional[List[Union[int, str]]] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None


class Project(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    status: ProjectStatus
    creator_id: Optional[int] = None
    task_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProjectStats(BaseModel):
    project_id: int
    total: int
    by_status: Dict[str, int]
    by_priority: Dict[int, int]
    overdue: int
    completion_rate: float


# Member schemas
class MembersAdd(BaseModel):
    user_ids: List[Union[int, str]]
    message: Optional[str] = None
    role: Optional[str] = None


class Member(BaseModel):
    user_id: int
    name: Optional[str] = None
    email: Optional[str] = None
    role: MemberRole
    global_role: Optional[str] = None
    added_at: Optional[datetime] = None


# Comment schemas
class CommentCreate(BaseModel):
    content: Optional[str] = None
    parent_id: Optional[int] = None


class CommentUpdate(BaseModel):
    content: Optional[str] = None


class Comment(BaseModel):
    id: int
    task_id: int
    user_id: Optional[int]
    author_name: Optional[str] = None
    content: str
    parent_id: Optional[int] = None
    edited: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CommentThread(Comment):
    replies: List[Comment] = Field(default_factory=list)


# User directory schemas
class UserSummary(BaseModel):
    id: int
    name: str
    email: str
    role: str
    division: Optional[str] = None
    department: Optional[str] = None


# Notification schemas
class NotificationType(str, Enum):
    invitation = "invitation"
    comment = "comment"


class Notification(BaseModel):
    id: int
    kind: NotificationType
    message: str
    recipient_id: int
    creator_id: Optional[int] = None
    project_id: Optional[int] = None
    task_id: Optional[int] = None
    created_at: Optional[datetime] = None


class NotificationPage(BaseModel):
    limit: int
    offset: int


class NotificationList(BaseModel):
    notifications: List[Notification] = Field(default_factory=list)
    pagination: NotificationPage
