"""
TaskTrack Worker — Celery app, notification delivery task and Beat jobs.

Celery Tasks:
    - tasktrack.notifications.deliver   : deliver one outbox row, bounded retries
    - tasktrack.notifications.requeue   : resend rows stuck in queued
    - tasktrack.tasks.archive_completed : retention-window auto-archive
    - tasktrack.tasks.send_due_reminders: due-soon reminders

Run:
    celery -A tasktrack.notifications.worker worker -B -Q notifications
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from celery import Celery
from celery.schedules import crontab
from sqlalchemy.orm import sessionmaker

from tasktrack.db.session import get_session_factory, init_db, session_scope
from tasktrack.engine.config import get_settings
from tasktrack.engine.context import utcnow
from tasktrack.engine.errors import DeliveryError
from tasktrack.notifications.delivery import (
    NotificationDeliverer,
    build_delivery_client,
    retry_countdown,
)

logger = logging.getLogger("tasktrack.notifications.worker")


# ---------------------------------------------------------------------------
# Celery app (configured from tasktrack.yaml)
# ---------------------------------------------------------------------------

_celery_app: Optional[Celery] = None


def _crontab(expression: str) -> crontab:
    """'m h dom mon dow' → celery crontab."""
    minute, hour, day_of_month, month_of_year, day_of_week = expression.split()
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )


def _create_celery_app() -> Celery:
    settings = get_settings()
    cfg = settings.celery

    app = Celery("tasktrack", broker=cfg.broker, backend=cfg.result_backend)
    app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        task_default_queue=cfg.queue,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=cfg.concurrency,
        beat_schedule={
            "archive-completed-tasks": {
                "task": "tasktrack.tasks.archive_completed",
                "schedule": _crontab(cfg.archive_schedule),
            },
            "send-due-reminders": {
                "task": "tasktrack.tasks.send_due_reminders",
                "schedule": cfg.reminder_interval_minutes * 60.0,
            },
            "requeue-notifications": {
                "task": "tasktrack.notifications.requeue",
                "schedule": cfg.requeue_interval_minutes * 60.0,
            },
        },
    )
    return app


def get_celery_app() -> Celery:
    """Get or create the Celery app singleton."""
    global _celery_app
    if _celery_app is None:
        _celery_app = _create_celery_app()
    return _celery_app


def _session_factory() -> sessionmaker:
    try:
        return get_session_factory()
    except RuntimeError:
        return init_db(get_settings().database)


_deliverer: Optional[NotificationDeliverer] = None


def get_deliverer() -> NotificationDeliverer:
    """Get or create the worker's deliverer."""
    global _deliverer
    if _deliverer is None:
        config = get_settings().notifications
        _deliverer = NotificationDeliverer(
            _session_factory(),
            build_delivery_client(config),
            max_attempts=config.max_attempts,
        )
    return _deliverer


def should_retry(exc: DeliveryError, attempt: int, max_attempts: int) -> bool:
    """Retry transient failures until ``max_attempts`` total attempts are used."""
    return exc.retryable and attempt < max_attempts


# ---------------------------------------------------------------------------
# Celery tasks
# ---------------------------------------------------------------------------

celery_app = get_celery_app()


@celery_app.task(bind=True, name="tasktrack.notifications.deliver")
def deliver_notification_task(self, notification_id: int) -> Dict[str, Any]:
    """
    Deliver one outbox row.

    Failures are retried with exponential backoff; after the last attempt
    the row is marked failed. The attempt number is the row's own count,
    so a requeued row never gets more than ``max_attempts`` in total.
    Nothing is raised back to the enqueuer.
    """
    config = get_settings().notifications
    deliverer = get_deliverer()

    try:
        delivered = deliverer.deliver(notification_id)
    except DeliveryError as exc:
        attempt = exc.attempt
        if should_retry(exc, attempt, config.max_attempts):
            logger.warning(
                f"Notification {notification_id} attempt {attempt}/{config.max_attempts} failed: "
                f"{exc.message}. Retrying..."
            )
            raise self.retry(
                exc=exc,
                countdown=retry_countdown(attempt, config.retry_delay),
                max_retries=config.max_attempts - 1,
            )
        deliverer.mark_failed(notification_id, attempt, exc.message)
        return {"notification_id": notification_id, "status": "failed", "attempts": attempt}

    return {"notification_id": notification_id, "status": "delivered" if delivered else "skipped"}


@celery_app.task(name="tasktrack.notifications.requeue")
def requeue_notifications_task() -> Dict[str, Any]:
    from tasktrack.notifications.dispatcher import get_dispatcher
    from tasktrack.tasks.maintenance import requeue_stale_notifications

    config = get_settings().notifications
    with session_scope(_session_factory()) as session:
        ids = requeue_stale_notifications(session, utcnow(), config.requeue_after_minutes)

    dispatcher = get_dispatcher()
    handed_off = sum(1 for notification_id in ids if dispatcher.hand_off(notification_id))
    return {"requeued": handed_off, "stale": len(ids)}


@celery_app.task(name="tasktrack.tasks.archive_completed")
def archive_completed_task() -> Dict[str, Any]:
    from tasktrack.tasks.maintenance import archive_completed_tasks

    retention_days = get_settings().lifecycle.archive_after_days
    with session_scope(_session_factory()) as session:
        archived = archive_completed_tasks(session, utcnow(), retention_days)
    return {"archived": archived}


@celery_app.task(name="tasktrack.tasks.send_due_reminders")
def send_due_reminders_task() -> Dict[str, Any]:
    from tasktrack.notifications.dispatcher import get_dispatcher
    from tasktrack.tasks.maintenance import collect_due_soon_events

    window_hours = get_settings().lifecycle.reminder_window_hours
    with session_scope(_session_factory()) as session:
        events = collect_due_soon_events(session, utcnow(), window_hours)

    ids = get_dispatcher().enqueue_all(events)
    return {"reminders": len(ids)}
