"""
Task Lifecycle Manager — validated state transitions on Task rows.

    pending → in_progress → completed → archived
       └──────────────────────↗

Every mutating method re-reads the current row inside the caller's session
(``SELECT … FOR UPDATE`` where the backend supports it), validates against
that state, mutates, flushes and returns a TransitionResult. Committing and
dispatching the returned events is the caller's job (see TaskService).

Idempotent no-ops:
    - assign() with the current assignee
    - complete() on a completed task (completed_at is left untouched)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from tasktrack.db.models import Task, User
from tasktrack.engine.config import LifecycleConfig
from tasktrack.engine.context import ExecutionContext, utcnow
from tasktrack.engine.errors import NotFoundError, StateError, ValidationError
from tasktrack.engine.logging import log, log_task_event
from tasktrack.notifications.events import ASSIGNED, COMPLETED, NotificationEvent
from tasktrack.security.permissions import (
    Action,
    require,
    require_authenticated,
    visible_tasks,
)
from tasktrack.tasks.schemas import TaskCreate, TaskUpdate

logger = logging.getLogger("tasktrack.tasks.lifecycle")

M = TypeVar("M", bound=BaseModel)


@dataclass
class TransitionResult:
    """Outcome of a mutating call: the entity and the events to enqueue."""

    task: Task
    events: Tuple[NotificationEvent, ...] = ()
    changed: bool = True


def validate_model(model: Type[M], fields: Dict[str, Any]) -> M:
    """Run a Pydantic model and translate its failure into ValidationError."""
    try:
        return model(**fields)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "error": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(
            f"Invalid {model.__name__} input: {errors[0]['field']}: {errors[0]['error']}",
            validation_errors=errors,
        ) from e


class TaskLifecycleManager:
    """
    Applies create/assign/start/complete/archive/edit/delete to tasks.

    Usage:
        manager = TaskLifecycleManager(session)
        result = manager.complete(task_id, ctx)
        session.commit()
        dispatcher.enqueue_all(result.events)
    """

    def __init__(
        self,
        session: Session,
        settings: Optional[LifecycleConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session = session
        self._settings = settings or LifecycleConfig()
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, task_id: int, ctx: ExecutionContext) -> Task:
        """Fetch a visible task. NotFoundError if absent, AuthorizationError if hidden."""
        require_authenticated(ctx)
        task = self._load(task_id, for_update=False)
        require(ctx, Action.VIEW, task)
        return task

    def list(
        self,
        ctx: ExecutionContext,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        assignee_id: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Task]:
        """Tasks in the actor's view scope, oldest id first."""
        require_authenticated(ctx)
        query = visible_tasks(self._session.query(Task), ctx)
        if status:
            query = query.filter(Task.status == status)
        if priority:
            query = query.filter(Task.priority == priority)
        if assignee_id is not None:
            query = query.filter(Task.assignee_id == assignee_id)
        return query.order_by(Task.id.asc()).offset(offset).limit(limit).all()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create(self, fields: Dict[str, Any], ctx: ExecutionContext) -> TransitionResult:
        require(ctx, Action.CREATE)
        data = validate_model(TaskCreate, fields)
        now = self._clock()
        self._check_due(data.due_at, now)

        assignee: Optional[User] = None
        if data.assignee_id is not None:
            require(ctx, Action.ASSIGN)
            assignee = self._load_user(data.assignee_id)

        task = Task(
            title=data.title,
            description=data.description,
            priority=data.priority,
            due_at=data.due_at,
            status="pending",
            creator_id=ctx.actor_id,
            assignee_id=assignee.id if assignee else None,
            created_at=now,
            updated_at=now,
        )
        self._session.add(task)
        self._session.flush()

        events: Tuple[NotificationEvent, ...] = ()
        if assignee is not None:
            events = (NotificationEvent(assignee.id, ASSIGNED, task.id),)
        self._record("create", task, ctx, to_status="pending", events=events)
        return TransitionResult(task, events)

    def assign(
        self, task_id: int, assignee_id: Optional[int], ctx: ExecutionContext
    ) -> TransitionResult:
        """Set (or clear, with None) the assignee. Same assignee is a silent no-op."""
        task = self._load(task_id)
        require(ctx, Action.ASSIGN, task)
        if task.is_archived:
            raise self._state_error(task, "assign")

        if task.assignee_id == assignee_id:
            return TransitionResult(task, (), changed=False)
        if assignee_id is not None:
            self._load_user(assignee_id)

        task.assignee_id = assignee_id
        task.updated_at = self._clock()
        self._session.flush()

        events: Tuple[NotificationEvent, ...] = ()
        if assignee_id is not None:
            events = (NotificationEvent(assignee_id, ASSIGNED, task.id),)
        self._record("assign", task, ctx, fields=["assignee_id"], events=events)
        return TransitionResult(task, events)

    def start(self, task_id: int, ctx: ExecutionContext) -> TransitionResult:
        """pending → in_progress."""
        task = self._load(task_id)
        if task.is_archived:
            raise self._state_error(task, "start")
        require(ctx, Action.EDIT, task)
        if task.status != "pending":
            raise self._state_error(task, "start")

        task.status = "in_progress"
        task.updated_at = self._clock()
        self._session.flush()
        self._record("start", task, ctx, from_status="pending", to_status="in_progress")
        return TransitionResult(task)

    def complete(self, task_id: int, ctx: ExecutionContext) -> TransitionResult:
        """Mark completed and notify the creator. Repeat calls change nothing."""
        task = self._load(task_id)
        if task.is_archived:
            raise self._state_error(task, "complete")
        # Owners may complete; otherwise the edit-any permission is needed
        require(ctx, Action.EDIT, task)

        if task.status == "completed":
            return TransitionResult(task, (), changed=False)

        previous = task.status
        now = self._clock()
        task.status = "completed"
        task.completed_at = now
        task.updated_at = now
        self._session.flush()

        events = (NotificationEvent(task.creator_id, COMPLETED, task.id),)
        self._record("complete", task, ctx, from_status=previous, to_status="completed", events=events)
        return TransitionResult(task, events)

    def archive(self, task_id: int, ctx: Optional[ExecutionContext] = None) -> TransitionResult:
        """
        completed → archived. Terminal.

        ``ctx=None`` is the retention job acting on its own authority.
        """
        task = self._load(task_id)
        if task.status != "completed":
            raise self._state_error(task, "archive")
        if ctx is not None:
            require(ctx, Action.EDIT, task)

        now = self._clock()
        task.status = "archived"
        task.archived_at = now
        task.completed_at = None
        task.updated_at = now
        self._session.flush()
        self._record("archive", task, ctx, from_status="completed", to_status="archived")
        return TransitionResult(task)

    def edit(self, task_id: int, changes: Dict[str, Any], ctx: ExecutionContext) -> TransitionResult:
        """Update title/description/priority/due_at."""
        task = self._load(task_id)
        if task.is_archived:
            raise self._state_error(task, "edit")
        require(ctx, Action.EDIT, task)

        data = validate_model(TaskUpdate, changes)
        updates = data.model_dump(exclude_unset=True)
        changed = [name for name, value in updates.items() if getattr(task, name) != value]
        if not changed:
            return TransitionResult(task, (), changed=False)
        if "due_at" in changed:
            self._check_due(updates["due_at"], self._clock())

        for name in changed:
            setattr(task, name, updates[name])
        task.updated_at = self._clock()
        self._session.flush()
        self._record("edit", task, ctx, fields=changed)
        return TransitionResult(task)

    def delete(self, task_id: int, ctx: ExecutionContext) -> TransitionResult:
        """Remove a task and, through the ORM cascade, its comments."""
        task = self._load(task_id)
        if task.is_archived:
            raise self._state_error(task, "delete")
        require(ctx, Action.DELETE, task)

        self._session.delete(task)
        self._session.flush()
        self._record("delete", task, ctx, from_status=task.status)
        return TransitionResult(task)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, task_id: int, for_update: bool = True) -> Task:
        query = self._session.query(Task).filter(Task.id == task_id)
        if for_update:
            query = query.with_for_update()
        task = query.one_or_none()
        if task is None:
            raise NotFoundError(
                f"Task {task_id} not found",
                entity="task",
                entity_id=task_id,
                task_id=task_id,
            )
        return task

    def _load_user(self, user_id: int) -> User:
        user = self._session.get(User, user_id)
        if user is None or not user.is_active:
            raise NotFoundError(f"User {user_id} not found", entity="user", entity_id=user_id)
        return user

    def _check_due(self, due_at: Optional[datetime], now: datetime) -> None:
        if due_at is not None and self._settings.require_future_due and due_at < now:
            raise ValidationError(
                "Due time must not be in the past",
                validation_errors=[{"field": "due_at", "error": "must not precede now"}],
            )

    @staticmethod
    def _state_error(task: Task, operation: str) -> StateError:
        return StateError(
            f"Cannot {operation} task {task.id} in status '{task.status}'",
            task_id=task.id,
            current_status=task.status,
            operation=operation,
        )

    @staticmethod
    def _record(
        operation: str,
        task: Task,
        ctx: Optional[ExecutionContext],
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        fields: Optional[List[str]] = None,
        events: Tuple[NotificationEvent, ...] = (),
    ) -> None:
        actor_id = ctx.actor_id if ctx is not None else None
        logger.info("Task %s: %s by actor %s", task.id, operation, actor_id)
        log(log_task_event(
            operation=operation,
            task_id=task.id,
            actor_id=actor_id,
            from_status=from_status,
            to_status=to_status,
            fields_changed=fields,
            events_emitted=len(events),
            execution_id=ctx.execution_id if ctx is not None else None,
        ))
