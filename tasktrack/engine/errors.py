"""
TaskTrack Error Hierarchy — Structured exceptions for every caller-visible failure.

All errors carry their keyword context so they can be serialized into the
JSONL audit logs and into HTTP error bodies unchanged.

Hierarchy:
    TaskTrackError
    ├── ValidationError      — Bad input shape/values (caller-fixable)
    ├── AuthorizationError   — Actor lacks permission (never retried)
    ├── NotFoundError        — Referenced entity absent
    ├── StateError           — Illegal transition for the current lifecycle state
    ├── ConfigError          — Invalid tasktrack.yaml
    └── DeliveryError        — Message-delivery service call failed
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class TaskTrackError(Exception):
    """
    Base error for all TaskTrack failures.
    All context is serializable to JSON.
    """

    status_code: int = 500

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.task_id: Optional[int] = context.get("task_id")
        self.execution_id: Optional[str] = context.get("execution_id")
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to JSON-compatible dict for logging and responses."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "task_id": self.task_id,
            "execution_id": self.execution_id,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("task_id", "execution_id")
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.task_id is not None:
            parts.append(f"task_id={self.task_id}")
        if self.execution_id:
            parts.append(f"execution_id={self.execution_id}")
        return " | ".join(parts)


class ValidationError(TaskTrackError):
    """
    Input validation failed.
    Includes field-level error details.
    """

    status_code = 422

    def __init__(self, message: str, **context: Any):
        self.validation_errors: List[Dict[str, Any]] = context.get("validation_errors") or []
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class AuthorizationError(TaskTrackError):
    """
    Access denied. Logged to security/ log files.
    Includes actor_id, role, and the action that was denied.
    """

    status_code = 403

    def __init__(self, message: str, **context: Any):
        self.actor_id: Optional[int] = context.get("actor_id")
        self.role: Optional[str] = context.get("role")
        self.action: Optional[str] = context.get("action")
        super().__init__(message, **context)

    @property
    def unauthenticated(self) -> bool:
        return self.role is None

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["actor_id"] = self.actor_id
        d["role"] = self.role
        d["action"] = self.action
        return d


class NotFoundError(TaskTrackError):
    """Referenced entity does not exist."""

    status_code = 404

    def __init__(self, message: str, **context: Any):
        self.entity: Optional[str] = context.get("entity")
        self.entity_id: Optional[int] = context.get("entity_id")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["entity"] = self.entity
        d["entity_id"] = self.entity_id
        return d


class StateError(TaskTrackError):
    """Operation is illegal for the task's current lifecycle state."""

    status_code = 409

    def __init__(self, message: str, **context: Any):
        self.current_status: Optional[str] = context.get("current_status")
        self.operation: Optional[str] = context.get("operation")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["current_status"] = self.current_status
        d["operation"] = self.operation
        return d


class ConfigError(TaskTrackError):
    """Configuration error — invalid tasktrack.yaml."""
    pass


class DeliveryError(TaskTrackError):
    """Message-delivery service call failed (HTTP error or transport failure)."""

    status_code = 502

    def __init__(self, message: str, **context: Any):
        self.delivery_status: Optional[int] = context.get("delivery_status")
        self.retryable: bool = context.get("retryable", True)
        self.attempt: Optional[int] = context.get("attempt")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["delivery_status"] = self.delivery_status
        d["retryable"] = self.retryable
        d["attempt"] = self.attempt
        return d
