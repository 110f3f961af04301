"""Notification event contract shared by the lifecycle manager and the dispatcher."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict

ASSIGNED = "assigned"
COMPLETED = "completed"
DUE_SOON = "due_soon"


@dataclass(frozen=True)
class NotificationEvent:
    """A notification intent: who to tell, what happened, to which task."""

    recipient_id: int
    event_type: str
    task_id: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
