"""
TaskTrack Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v

Every test gets a fresh in-memory SQLite database (StaticPool) and a
recording sender in place of the Celery hand-off, so no Redis or Postgres
is needed.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, List

import pytest

from tasktrack.db.models import User
from tasktrack.db.session import close_db, init_db, session_scope
from tasktrack.engine.config import DatabaseConfig, Settings, reset_settings
from tasktrack.engine.context import ExecutionContext
from tasktrack.notifications.dispatcher import NotificationDispatcher

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSender:
    """Stands in for deliver_notification_task.delay."""

    def __init__(self):
        self.sent: List[int] = []

    def __call__(self, notification_id: int) -> None:
        self.sent.append(notification_id)


# ---------------------------------------------------------------------------
# Global singletons
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset cached settings and singletons between tests."""
    import tasktrack.notifications.dispatcher as dispatcher_mod

    reset_settings()
    dispatcher_mod._dispatcher = None
    yield
    reset_settings()
    dispatcher_mod._dispatcher = None


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory():
    factory = init_db(DatabaseConfig(url="sqlite://"), create_tables=True)
    yield factory
    close_db()


@pytest.fixture
def session(session_factory, users):
    """A plain session for manager-level tests (no commit)."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


def _make_user(session, username: str, role: str, **kwargs) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        full_name=username.title(),
        role=role,
        **kwargs,
    )
    session.add(user)
    session.flush()
    return user


@pytest.fixture
def users(session_factory) -> Dict[str, User]:
    """admin, manager, two members and an inactive member, committed."""
    with session_scope(session_factory) as s:
        created = {
            "admin": _make_user(s, "alice", "admin"),
            "manager": _make_user(s, "mark", "manager"),
            "member": _make_user(s, "mia", "member"),
            "other": _make_user(s, "otto", "member"),
            "inactive": _make_user(s, "ivan", "member", is_active=False),
        }
    return created


def _ctx(user: User) -> ExecutionContext:
    return ExecutionContext(actor_id=user.id, role=user.role, username=user.username)


@pytest.fixture
def admin_ctx(users) -> ExecutionContext:
    return _ctx(users["admin"])


@pytest.fixture
def manager_ctx(users) -> ExecutionContext:
    return _ctx(users["manager"])


@pytest.fixture
def member_ctx(users) -> ExecutionContext:
    return _ctx(users["member"])


@pytest.fixture
def other_ctx(users) -> ExecutionContext:
    return _ctx(users["other"])


# ---------------------------------------------------------------------------
# Time and notifications
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def dispatcher(session_factory, sender) -> NotificationDispatcher:
    return NotificationDispatcher(session_factory, sender=sender)


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def tmp_log_dir(tmp_path):
    d = tmp_path / "logs"
    d.mkdir()
    return d
