"""
TaskService — the explicit boundary around every task operation.

One unit of work per call:
    open session → manager/aggregator call → commit → enqueue events

Events are enqueued only after the commit succeeds, and enqueue problems
never reach the caller: the task change is durable on its own.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from tasktrack.dashboard.aggregator import DashboardAggregator, DashboardSummary
from tasktrack.db.models import Comment, Task, User
from tasktrack.db.session import session_scope
from tasktrack.engine.config import Settings
from tasktrack.engine.context import ExecutionContext, utcnow
from tasktrack.engine.errors import NotFoundError
from tasktrack.notifications.dispatcher import NotificationDispatcher
from tasktrack.security.permissions import require_authenticated
from tasktrack.tasks.comments import CommentManager
from tasktrack.tasks.lifecycle import TaskLifecycleManager, TransitionResult

logger = logging.getLogger("tasktrack.tasks.service")


class TaskService:

    def __init__(
        self,
        session_factory: sessionmaker,
        dispatcher: NotificationDispatcher,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._settings = settings or Settings()
        self._clock = clock

    # -- transitions ---------------------------------------------------

    def create_task(self, fields: Dict[str, Any], ctx: ExecutionContext) -> TransitionResult:
        return self._transition(lambda m: m.create(fields, ctx))

    def assign_task(self, task_id: int, assignee_id: Optional[int], ctx: ExecutionContext) -> TransitionResult:
        return self._transition(lambda m: m.assign(task_id, assignee_id, ctx))

    def start_task(self, task_id: int, ctx: ExecutionContext) -> TransitionResult:
        return self._transition(lambda m: m.start(task_id, ctx))

    def complete_task(self, task_id: int, ctx: ExecutionContext) -> TransitionResult:
        return self._transition(lambda m: m.complete(task_id, ctx))

    def archive_task(self, task_id: int, ctx: Optional[ExecutionContext]) -> TransitionResult:
        return self._transition(lambda m: m.archive(task_id, ctx))

    def edit_task(self, task_id: int, changes: Dict[str, Any], ctx: ExecutionContext) -> TransitionResult:
        return self._transition(lambda m: m.edit(task_id, changes, ctx))

    def delete_task(self, task_id: int, ctx: ExecutionContext) -> TransitionResult:
        return self._transition(lambda m: m.delete(task_id, ctx))

    # -- reads ---------------------------------------------------------

    def get_task(self, task_id: int, ctx: ExecutionContext) -> Task:
        with session_scope(self._session_factory) as session:
            return self._manager(session).get(task_id, ctx)

    def list_tasks(self, ctx: ExecutionContext, **filters: Any) -> List[Task]:
        with session_scope(self._session_factory) as session:
            return self._manager(session).list(ctx, **filters)

    def dashboard(self, ctx: ExecutionContext) -> DashboardSummary:
        with session_scope(self._session_factory) as session:
            aggregator = DashboardAggregator(session, self._settings.dashboard, clock=self._clock)
            return aggregator.summarize(ctx)

    def current_user(self, ctx: ExecutionContext) -> User:
        require_authenticated(ctx)
        with session_scope(self._session_factory) as session:
            user = session.get(User, ctx.actor_id)
            if user is None:
                raise NotFoundError(f"User {ctx.actor_id} not found", entity="user", entity_id=ctx.actor_id)
            return user

    # -- comments ------------------------------------------------------

    def add_comment(self, task_id: int, content: str, ctx: ExecutionContext) -> Comment:
        with session_scope(self._session_factory) as session:
            return CommentManager(session, clock=self._clock).add(task_id, content, ctx)

    def list_comments(self, task_id: int, ctx: ExecutionContext) -> List[Comment]:
        with session_scope(self._session_factory) as session:
            return CommentManager(session, clock=self._clock).list(task_id, ctx)

    def delete_comment(self, comment_id: int, ctx: ExecutionContext) -> None:
        with session_scope(self._session_factory) as session:
            CommentManager(session, clock=self._clock).delete(comment_id, ctx)

    # -- internals -----------------------------------------------------

    def _manager(self, session) -> TaskLifecycleManager:
        return TaskLifecycleManager(session, self._settings.lifecycle, clock=self._clock)

    def _transition(self, operation: Callable[[TaskLifecycleManager], TransitionResult]) -> TransitionResult:
        with session_scope(self._session_factory) as session:
            result = operation(self._manager(session))
        if result.events:
            self._dispatcher.enqueue_all(result.events)
        return result
