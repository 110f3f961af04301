"""
TaskTrack Models — All SQLAlchemy models.

Tables:
1. users          — Accounts with one of three roles (admin/manager/member)
2. tasks          — Work items with a linear lifecycle
3. comments       — Free-text notes, exclusively owned by a task
4. notifications  — Outbox of notification events handed to the worker
"""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from tasktrack.db.base import Base, TimestampMixin, UTCDateTime
from tasktrack.engine.context import utcnow

ROLES = ("admin", "manager", "member")
TASK_STATUSES = ("pending", "in_progress", "completed", "archived")
TASK_PRIORITIES = ("low", "medium", "high", "urgent")
OPEN_STATUSES = ("pending", "in_progress")
EVENT_TYPES = ("assigned", "completed", "due_soon")
NOTIFICATION_STATUSES = ("queued", "delivered", "failed")


def _in_check(column: str, values: tuple) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


# ---------------------------------------------------------------------------
# 1. Users
# ---------------------------------------------------------------------------

class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(200), nullable=False, default="")
    role = Column(String(20), default="member", nullable=False, index=True)
    password_hash = Column(String(255), nullable=True)
    api_key_hash = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_tasks = relationship(
        "Task", back_populates="creator", foreign_keys="Task.creator_id"
    )
    assigned_tasks = relationship(
        "Task", back_populates="assignee", foreign_keys="Task.assignee_id"
    )

    __table_args__ = (
        CheckConstraint(_in_check("role", ROLES), name="ck_users_role"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}', role='{self.role}')>"


# ---------------------------------------------------------------------------
# 2. Tasks
# ---------------------------------------------------------------------------

class Task(Base, TimestampMixin):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), default="pending", nullable=False, index=True)
    priority = Column(String(20), default="medium", nullable=False, index=True)
    due_at = Column(UTCDateTime(), nullable=True, index=True)
    completed_at = Column(UTCDateTime(), nullable=True)
    archived_at = Column(UTCDateTime(), nullable=True)
    reminder_sent_at = Column(UTCDateTime(), nullable=True)
    creator_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    assignee_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    creator = relationship("User", back_populates="created_tasks", foreign_keys=[creator_id])
    assignee = relationship("User", back_populates="assigned_tasks", foreign_keys=[assignee_id])
    comments = relationship(
        "Comment",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="Comment.id",
    )

    __table_args__ = (
        CheckConstraint(_in_check("status", TASK_STATUSES), name="ck_tasks_status"),
        CheckConstraint(_in_check("priority", TASK_PRIORITIES), name="ck_tasks_priority"),
        CheckConstraint(
            "(status = 'completed' AND completed_at IS NOT NULL) "
            "OR (status != 'completed' AND completed_at IS NULL)",
            name="ck_tasks_completed_at",
        ),
        Index("idx_tasks_updated_id", "updated_at", "id"),
    )

    @property
    def is_archived(self) -> bool:
        return self.status == "archived"

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def __repr__(self) -> str:
        return f"<Task(id={self.id}, title='{self.title}', status='{self.status}')>"


# ---------------------------------------------------------------------------
# 3. Comments
# ---------------------------------------------------------------------------

class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(UTCDateTime(), default=utcnow, nullable=False)

    task = relationship("Task", back_populates="comments")
    author = relationship("User")

    def __repr__(self) -> str:
        return f"<Comment(id={self.id}, task_id={self.task_id}, author_id={self.author_id})>"


# ---------------------------------------------------------------------------
# 4. Notifications (outbox)
# ---------------------------------------------------------------------------

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipient_id = Column(Integer, nullable=False, index=True)
    event_type = Column(String(30), nullable=False)
    # No FK: delivery history outlives deleted tasks
    task_id = Column(Integer, nullable=True, index=True)
    status = Column(String(20), default="queued", nullable=False, index=True)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    last_attempt_at = Column(UTCDateTime(), nullable=True)
    created_at = Column(UTCDateTime(), default=utcnow, nullable=False, index=True)
    delivered_at = Column(UTCDateTime(), nullable=True)

    __table_args__ = (
        CheckConstraint(_in_check("event_type", EVENT_TYPES), name="ck_notifications_event_type"),
        CheckConstraint(_in_check("status", NOTIFICATION_STATUSES), name="ck_notifications_status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, type='{self.event_type}', "
            f"recipient={self.recipient_id}, status='{self.status}')>"
        )
