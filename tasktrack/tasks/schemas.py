"""Pydantic request/response models for tasks, comments and the dashboard."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Priority = Literal["low", "medium", "high", "urgent"]
Status = Literal["pending", "in_progress", "completed", "archived"]


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # Naive timestamps from clients are taken as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TaskCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(max_length=200, description="Task title")
    description: Optional[str] = Field(default=None, max_length=4000)
    priority: Priority = "medium"
    due_at: Optional[datetime] = None
    assignee_id: Optional[int] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title is required")
        return v

    @field_validator("due_at")
    @classmethod
    def due_at_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _aware(v)


class TaskUpdate(BaseModel):
    """Editable fields; status moves only through lifecycle transitions."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=4000)
    priority: Optional[Priority] = None
    due_at: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            raise ValueError("Title cannot be removed")
        v = v.strip()
        if not v:
            raise ValueError("Title is required")
        return v

    @field_validator("priority")
    @classmethod
    def priority_not_null(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            raise ValueError("Priority cannot be removed")
        return v

    @field_validator("due_at")
    @classmethod
    def due_at_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _aware(v)


class AssignRequest(BaseModel):
    assignee_id: Optional[int] = None


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    status: Status
    priority: Priority
    due_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    creator_id: int
    assignee_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class CommentCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    content: str = Field(max_length=4000)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Comment content is required")
        return v


class CommentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    task_id: int
    author_id: int
    content: str
    created_at: datetime


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    full_name: str
    role: Literal["admin", "manager", "member"]


class DashboardRead(BaseModel):
    counts_by_status: Dict[str, int]
    overdue_count: int
    assigned_incomplete: List[TaskRead]
    recent_activity: List[TaskRead]
