"""Comment operations — gated by the task's view scope."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List

from sqlalchemy.orm import Session

from tasktrack.db.models import Comment, Task
from tasktrack.engine.context import ExecutionContext, utcnow
from tasktrack.engine.errors import NotFoundError, StateError
from tasktrack.engine.logging import log, log_task_event
from tasktrack.security.permissions import Action, Role, deny, require, require_authenticated
from tasktrack.tasks.lifecycle import validate_model
from tasktrack.tasks.schemas import CommentCreate

logger = logging.getLogger("tasktrack.tasks.comments")


class CommentManager:
    """Anyone who can view a task can discuss it; archived tasks are closed for new comments."""

    def __init__(self, session: Session, clock: Callable[[], datetime] = utcnow):
        self._session = session
        self._clock = clock

    def add(self, task_id: int, content: str, ctx: ExecutionContext) -> Comment:
        require_authenticated(ctx, Action.CREATE)
        task = self._load_task(task_id)
        require(ctx, Action.VIEW, task, object_type="comments")
        if task.is_archived:
            raise StateError(
                f"Cannot comment on archived task {task.id}",
                task_id=task.id,
                current_status=task.status,
                operation="comment",
            )

        data = validate_model(CommentCreate, {"content": content})
        comment = Comment(
            task_id=task.id,
            author_id=ctx.actor_id,
            content=data.content,
            created_at=self._clock(),
        )
        self._session.add(comment)
        self._session.flush()
        logger.info("Comment %s added to task %s by %s", comment.id, task.id, ctx.actor_id)
        log(log_task_event("comment", task.id, ctx.actor_id, execution_id=ctx.execution_id))
        return comment

    def list(self, task_id: int, ctx: ExecutionContext) -> List[Comment]:
        """Comments on a visible task, oldest first."""
        require_authenticated(ctx)
        task = self._load_task(task_id)
        require(ctx, Action.VIEW, task, object_type="comments")
        return (
            self._session.query(Comment)
            .filter(Comment.task_id == task.id)
            .order_by(Comment.created_at.asc(), Comment.id.asc())
            .all()
        )

    def delete(self, comment_id: int, ctx: ExecutionContext) -> None:
        """Authors delete their own comments; admins delete any."""
        require_authenticated(ctx, Action.DELETE)
        comment = self._session.get(Comment, comment_id)
        if comment is None:
            raise NotFoundError(
                f"Comment {comment_id} not found", entity="comment", entity_id=comment_id
            )
        if comment.author_id != ctx.actor_id and ctx.role != Role.ADMIN.value:
            deny(ctx, Action.DELETE, comment.id, object_type="comments")
        if comment.task.is_archived:
            raise StateError(
                f"Cannot delete comments of archived task {comment.task_id}",
                task_id=comment.task_id,
                current_status="archived",
                operation="delete_comment",
            )
        self._session.delete(comment)
        self._session.flush()
        log(log_task_event("uncomment", comment.task_id, ctx.actor_id, execution_id=ctx.execution_id))

    def _load_task(self, task_id: int) -> Task:
        task = self._session.get(Task, task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found", entity="task", entity_id=task_id, task_id=task_id)
        return task
