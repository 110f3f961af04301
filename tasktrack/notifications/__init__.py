"""TaskTrack Notifications — event contract, outbox dispatcher, delivery."""

from tasktrack.notifications.dispatcher import (  # noqa: F401
    NotificationDispatcher,
    get_dispatcher,
    init_dispatcher,
)
from tasktrack.notifications.events import NotificationEvent  # noqa: F401

__all__ = [
    "NotificationEvent",
    "NotificationDispatcher",
    "get_dispatcher",
    "init_dispatcher",
]
