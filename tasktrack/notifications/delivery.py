"""
Notification delivery — hands outbox rows to the external message-delivery service.

Clients:
    HttpDeliveryClient — POST JSON via httpx; 429/5xx/transport errors are
                         retryable, other 4xx are not
    LogDeliveryClient  — writes the payload to the log (dev environments)

NotificationDeliverer owns the outbox bookkeeping around a client call:
skip already-delivered rows, count attempts, mark delivered or failed.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Protocol

import httpx
from sqlalchemy.orm import Session, sessionmaker

from tasktrack.db.models import Notification, Task, User
from tasktrack.db.session import session_scope
from tasktrack.engine.config import NotificationsConfig
from tasktrack.engine.context import utcnow
from tasktrack.engine.errors import ConfigError, DeliveryError
from tasktrack.engine.logging import log, log_notification_event

logger = logging.getLogger("tasktrack.notifications.delivery")

MESSAGES = {
    "assigned": "You have been assigned to '{title}'",
    "completed": "'{title}' was completed",
    "due_soon": "'{title}' is due at {due_at}",
}


class DeliveryClient(Protocol):
    def send(self, payload: Dict[str, Any]) -> None: ...


class HttpDeliveryClient:
    """POSTs notification payloads to the delivery service."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["X-API-Key"] = api_key
        self._url = url
        self._client = httpx.Client(
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
            transport=transport,
        )

    def send(self, payload: Dict[str, Any]) -> None:
        try:
            response = self._client.post(
                self._url,
                json=payload,
                headers={"X-Idempotency-Key": f"notification-{payload['notification_id']}"},
            )
        except httpx.HTTPError as e:
            raise DeliveryError(f"Delivery service unreachable: {e}", retryable=True) from e

        status = response.status_code
        if status < 400:
            return
        retryable = status == 429 or status >= 500
        raise DeliveryError(
            f"Delivery service returned {status}",
            delivery_status=status,
            retryable=retryable,
            response_body=response.text[:500],
        )

    def close(self) -> None:
        self._client.close()


class LogDeliveryClient:
    """Development stand-in for the delivery service: log and accept."""

    def send(self, payload: Dict[str, Any]) -> None:
        logger.info(
            "Notification %s → user %s: %s",
            payload["notification_id"], payload["recipient"]["id"], payload["message"],
        )


def build_delivery_client(config: NotificationsConfig) -> DeliveryClient:
    if config.backend == "log":
        return LogDeliveryClient()
    if not config.delivery_url:
        raise ConfigError("notifications.delivery_url is required for the http backend")
    return HttpDeliveryClient(config.delivery_url, api_key=config.api_key, timeout=config.timeout)


def retry_countdown(attempt: int, base_delay: int) -> int:
    """Exponential backoff: base, 2*base, 4*base, …"""
    return base_delay * (2 ** (attempt - 1))


class NotificationDeliverer:
    """
    Usage:
        deliverer = NotificationDeliverer(session_factory, client, max_attempts=3)
        deliverer.deliver(notification_id)

    Attempts are counted on the outbox row, so a row handed off again by the
    requeue sweep continues its count instead of starting over.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        client: DeliveryClient,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int = 3,
    ):
        self._session_factory = session_factory
        self._client = client
        self._clock = clock
        self._max_attempts = max_attempts

    def deliver(self, notification_id: int) -> bool:
        """
        Send one outbox row as its next attempt.

        Returns:
            True if sent now. False if the row is missing, no longer queued,
            or already out of attempts (it is then marked failed).

        Raises:
            DeliveryError with ``attempt`` set, after recording the error;
            the caller decides on retry.
        """
        with session_scope(self._session_factory) as session:
            row = session.get(Notification, notification_id)
            if row is None:
                logger.warning(f"Notification {notification_id} not found — skipping")
                return False
            if row.status != "queued":
                return False
            if row.attempts >= self._max_attempts:
                exhausted = (row.attempts, row.last_error or "attempts exhausted")
            else:
                exhausted = None
                row.attempts += 1
                row.last_attempt_at = self._clock()
                payload = self._payload(session, row)
            attempt = row.attempts
            recipient_id, event_type, task_id = row.recipient_id, row.event_type, row.task_id

        if exhausted is not None:
            self.mark_failed(notification_id, *exhausted)
            return False

        started = time.monotonic()
        try:
            self._client.send(payload)
        except DeliveryError as e:
            self._record_error(notification_id, str(e))
            log(log_notification_event(
                "delivery_attempt_failed", notification_id, recipient_id, event_type, task_id,
                attempt=attempt, error=str(e),
            ))
            raise DeliveryError(e.message, **{**e.context, "attempt": attempt}) from e

        duration_ms = round((time.monotonic() - started) * 1000, 2)
        with session_scope(self._session_factory) as session:
            row = session.get(Notification, notification_id)
            row.status = "delivered"
            row.last_error = None
            row.delivered_at = self._clock()
        log(log_notification_event(
            "delivered", notification_id, recipient_id, event_type, task_id,
            attempt=attempt, duration_ms=duration_ms,
        ))
        return True

    def mark_failed(self, notification_id: int, attempt: int, error: str) -> None:
        """Give up on a row: the delivery-failed observation is the only outcome."""
        with session_scope(self._session_factory) as session:
            row = session.get(Notification, notification_id)
            if row is None or row.status == "delivered":
                return
            row.status = "failed"
            row.attempts = attempt
            row.last_error = error
            recipient_id, event_type, task_id = row.recipient_id, row.event_type, row.task_id
        logger.error(f"Notification {notification_id} failed after {attempt} attempt(s): {error}")
        log(log_notification_event(
            "delivery_failed", notification_id, recipient_id, event_type, task_id,
            attempt=attempt, error=error,
        ))

    def _record_error(self, notification_id: int, error: str) -> None:
        with session_scope(self._session_factory) as session:
            row = session.get(Notification, notification_id)
            if row is not None:
                row.last_error = error

    @staticmethod
    def _payload(session: Session, row: Notification) -> Dict[str, Any]:
        recipient = session.get(User, row.recipient_id)
        task = session.get(Task, row.task_id) if row.task_id is not None else None
        title = task.title if task is not None else f"task {row.task_id}"
        due_at = task.due_at.isoformat() if task is not None and task.due_at else None
        return {
            "notification_id": row.id,
            "event_type": row.event_type,
            "recipient": {
                "id": row.recipient_id,
                "email": recipient.email if recipient else None,
                "full_name": recipient.full_name if recipient else None,
            },
            "task": {
                "id": row.task_id,
                "title": title,
                "status": task.status if task is not None else None,
                "due_at": due_at,
            },
            "message": MESSAGES[row.event_type].format(title=title, due_at=due_at),
        }
