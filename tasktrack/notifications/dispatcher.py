"""
Notification Dispatcher — outbox write + asynchronous hand-off.

enqueue() persists a ``notifications`` row (status queued) and passes its
id to the Celery delivery task. The caller never waits on delivery:

    - outbox write fails  → logged, None returned, caller unaffected
    - broker hand-off fails → row stays queued; the requeue sweep resends it

Once a row exists the event is accepted and will be attempted at least once.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, List, Optional

from kombu.exceptions import KombuError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from tasktrack.db.models import Notification
from tasktrack.db.session import session_scope
from tasktrack.engine.logging import log, log_notification_event
from tasktrack.notifications.events import NotificationEvent

logger = logging.getLogger("tasktrack.notifications.dispatcher")

Sender = Callable[[int], Any]


def _celery_sender(notification_id: int) -> Any:
    from tasktrack.notifications.worker import deliver_notification_task

    return deliver_notification_task.delay(notification_id)


class NotificationDispatcher:
    """
    Usage:
        dispatcher = NotificationDispatcher(session_factory)
        dispatcher.enqueue(NotificationEvent(7, "assigned", 42))
    """

    def __init__(self, session_factory: sessionmaker, sender: Optional[Sender] = None):
        self._session_factory = session_factory
        self._sender: Sender = sender or _celery_sender

    def enqueue(self, event: NotificationEvent) -> Optional[int]:
        """Accept an event for delivery. Returns the outbox id, or None if it could not be stored."""
        try:
            with session_scope(self._session_factory) as session:
                row = Notification(
                    recipient_id=event.recipient_id,
                    event_type=event.event_type,
                    task_id=event.task_id,
                    status="queued",
                )
                session.add(row)
                session.flush()
                notification_id = row.id
        except SQLAlchemyError as e:
            logger.error(f"Could not store {event.event_type} notification for task {event.task_id}: {e}")
            log(log_notification_event(
                "enqueue_failed", None, event.recipient_id, event.event_type, event.task_id, error=str(e),
            ))
            return None

        log(log_notification_event(
            "queued", notification_id, event.recipient_id, event.event_type, event.task_id,
        ))
        self.hand_off(notification_id)
        return notification_id

    def enqueue_all(self, events: Iterable[NotificationEvent]) -> List[Optional[int]]:
        return [self.enqueue(event) for event in events]

    def hand_off(self, notification_id: int) -> bool:
        """Pass an outbox id to the worker. False leaves the row for the requeue sweep."""
        try:
            self._sender(notification_id)
        except (KombuError, OSError) as e:
            logger.warning(
                f"Broker hand-off failed for notification {notification_id}, "
                f"left queued for requeue: {e}"
            )
            return False
        return True


_dispatcher: Optional[NotificationDispatcher] = None


def get_dispatcher() -> NotificationDispatcher:
    """Get or create the global dispatcher bound to the initialised database."""
    global _dispatcher
    if _dispatcher is None:
        from tasktrack.db.session import get_session_factory

        _dispatcher = NotificationDispatcher(get_session_factory())
    return _dispatcher


def init_dispatcher(session_factory: sessionmaker, sender: Optional[Sender] = None) -> NotificationDispatcher:
    """Initialize the global dispatcher with a specific session factory."""
    global _dispatcher
    _dispatcher = NotificationDispatcher(session_factory, sender=sender)
    return _dispatcher
