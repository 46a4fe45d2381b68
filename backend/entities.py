"""
Plain records exchanged between the store and the service layer.

Stores map their own representation (ORM rows, dictionaries) to these
dataclasses so that services, permission checks and validators never depend on
how the data is persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class User:
    id: Optional[int]
    name: str
    email: str
    role: str = "staff"
    hierarchy: int = 1
    division: Optional[str] = None
    department: Optional[str] = None
    password_hash: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None


@dataclass
class Project:
    id: Optional[int]
    name: str
    description: str
    creator_id: int
    status: str = "active"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class ProjectMember:
    project_id: int
    user_id: int
    role: str = "collaborator"
    added_at: Optional[datetime] = None


@dataclass
class Task:
    id: Optional[int]
    project_id: int
    title: str
    description: str = ""
    priority: int = 5
    status: str = "pending"
    deadline: Optional[datetime] = None
    assigned_to: List[int] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    parent_id: Optional[int] = None
    archived: bool = False
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class HoursEntry:
    task_id: int
    user_id: int
    hours: float
    project_id: Optional[int] = None
    updated_at: Optional[datetime] = None


@dataclass
class Comment:
    id: Optional[int]
    task_id: int
    user_id: int
    content: str
    parent_id: Optional[int] = None
    edited: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class Notification:
    id: Optional[int]
    kind: str
    message: str
    recipient_id: int
    creator_id: Optional[int] = None
    project_id: Optional[int] = None
    task_id: Optional[int] = None
    created_at: Optional[datetime] = None
