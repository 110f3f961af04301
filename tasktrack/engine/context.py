"""
TaskTrack Execution Context — per-request actor identity.

The authentication provider resolves (actor_id, role) for each request and
the HTTP layer binds it to an ExecutionContext. Core operations receive the
context explicitly and copy its ``execution_id`` into their log entries.

Usage:
    from tasktrack.engine.context import ExecutionContext, utcnow
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time. Default clock for every component."""
    return datetime.now(timezone.utc)


@dataclass
class ExecutionContext:
    """
    The actor performing a request.

    ``role`` is None for an unauthenticated caller; every permission check
    denies such a context.
    """

    actor_id: Optional[int]
    role: Optional[str]
    username: str = ""
    execution_id: str = field(default_factory=lambda: f"exec_{uuid.uuid4().hex[:12]}")

    @property
    def is_authenticated(self) -> bool:
        return self.actor_id is not None and self.role is not None


ANONYMOUS = ExecutionContext(actor_id=None, role=None, username="anonymous")
