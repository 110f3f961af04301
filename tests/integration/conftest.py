"""
Integration test fixtures — the API, outbox and Celery delivery task wired together.

Celery runs eagerly (``Task.apply``) and the delivery service is an
``httpx.MockTransport``, so no broker or network is needed.

Run: pytest tests/integration/ -v -m integration
"""

from __future__ import annotations

import json
from typing import Any, Dict, List
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from tasktrack.api import create_app
from tasktrack.db.models import User
from tasktrack.db.session import session_scope
from tasktrack.notifications.delivery import HttpDeliveryClient, NotificationDeliverer
from tasktrack.notifications.dispatcher import NotificationDispatcher
from tasktrack.security.auth import issue_api_key


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: cross-module workflows")


class DeliveryService:
    """Fake message-delivery endpoint with scriptable status codes."""

    def __init__(self):
        self.received: List[Dict[str, Any]] = []
        self.statuses: List[int] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.received.append(json.loads(request.content))
        status = self.statuses.pop(0) if self.statuses else 202
        return httpx.Response(status)


@pytest.fixture
def delivery_service():
    return DeliveryService()


@pytest.fixture
def stack(session_factory, settings, users, delivery_service):
    """API client + eager Celery delivery against the fake service."""
    import tasktrack.notifications.worker as worker_mod

    deliverer = NotificationDeliverer(
        session_factory,
        HttpDeliveryClient("https://notify.test/send", transport=httpx.MockTransport(delivery_service.handler)),
    )

    def eager_sender(notification_id: int):
        return worker_mod.deliver_notification_task.apply(args=[notification_id])

    dispatcher = NotificationDispatcher(session_factory, sender=eager_sender)

    keys = {}
    with session_scope(session_factory) as s:
        for name in ("admin", "manager", "member", "other"):
            keys[name] = issue_api_key(s, s.get(User, users[name].id), rounds=4)

    with patch.object(worker_mod, "get_deliverer", return_value=deliverer):
        client = TestClient(create_app(settings, session_factory, dispatcher))
        yield client, keys
