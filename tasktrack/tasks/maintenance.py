"""
Periodic maintenance over the task set.

Each function works inside a caller-provided session so the Celery Beat
wrappers in tasktrack.notifications.worker stay thin:

    archive_completed_tasks      — completed → archived after the retention window
    collect_due_soon_events      — one due_soon reminder per open task
    requeue_stale_notifications  — queued outbox rows with no recent delivery attempt
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from tasktrack.db.models import OPEN_STATUSES, Notification, Task
from tasktrack.engine.errors import StateError
from tasktrack.engine.logging import log, log_system_event
from tasktrack.notifications.events import DUE_SOON, NotificationEvent
from tasktrack.tasks.lifecycle import TaskLifecycleManager

logger = logging.getLogger("tasktrack.tasks.maintenance")


def archive_completed_tasks(session: Session, now: datetime, retention_days: int = 30) -> List[int]:
    """Archive tasks completed at least ``retention_days`` ago. Returns archived ids."""
    cutoff = now - timedelta(days=retention_days)
    candidates = [
        task_id for (task_id,) in (
            session.query(Task.id)
            .filter(Task.status == "completed", Task.completed_at <= cutoff)
            .order_by(Task.id.asc())
        )
    ]

    manager = TaskLifecycleManager(session, clock=lambda: now)
    archived: List[int] = []
    for task_id in candidates:
        try:
            manager.archive(task_id)
        except StateError:
            # Re-read found it no longer completed
            continue
        archived.append(task_id)

    if archived:
        logger.info(f"Auto-archived {len(archived)} task(s) completed before {cutoff.isoformat()}")
        log(log_system_event("auto_archive", details={"task_ids": archived, "cutoff": cutoff.isoformat()}))
    return archived


def collect_due_soon_events(session: Session, now: datetime, window_hours: int = 24) -> List[NotificationEvent]:
    """
    Reminder events for open tasks due within the window.

    The assignee is reminded, or the creator when nobody is assigned.
    ``reminder_sent_at`` marks each task so it is reminded only once.
    """
    horizon = now + timedelta(hours=window_hours)
    tasks = (
        session.query(Task)
        .filter(
            Task.status.in_(OPEN_STATUSES),
            Task.due_at.isnot(None),
            Task.due_at > now,
            Task.due_at <= horizon,
            Task.reminder_sent_at.is_(None),
        )
        .order_by(Task.due_at.asc(), Task.id.asc())
        .with_for_update()
        .all()
    )

    events: List[NotificationEvent] = []
    for task in tasks:
        task.reminder_sent_at = now
        recipient = task.assignee_id if task.assignee_id is not None else task.creator_id
        events.append(NotificationEvent(recipient, DUE_SOON, task.id))
    session.flush()

    if events:
        logger.info(f"Collected {len(events)} due-soon reminder(s)")
    return events


def requeue_stale_notifications(session: Session, now: datetime, older_than_minutes: int = 10) -> List[int]:
    """
    Ids of outbox rows still queued and idle for ``older_than_minutes``.

    Idle is measured from the last delivery attempt, or from creation for
    rows never attempted, so rows waiting on a scheduled retry are left alone.
    """
    cutoff = now - timedelta(minutes=older_than_minutes)
    return [
        notification_id for (notification_id,) in (
            session.query(Notification.id)
            .filter(
                Notification.status == "queued",
                or_(
                    and_(Notification.last_attempt_at.is_(None), Notification.created_at <= cutoff),
                    Notification.last_attempt_at <= cutoff,
                ),
            )
            .order_by(Notification.id.asc())
        )
    ]
