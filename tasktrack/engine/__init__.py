"""TaskTrack Engine — configuration, errors, structured logging, execution context."""

from tasktrack.engine.errors import (  # noqa: F401
    AuthorizationError,
    ConfigError,
    DeliveryError,
    NotFoundError,
    StateError,
    TaskTrackError,
    ValidationError,
)

__all__ = [
    "TaskTrackError",
    "ValidationError",
    "AuthorizationError",
    "NotFoundError",
    "StateError",
    "ConfigError",
    "DeliveryError",
]
