"""
TaskTrack — Task management backend.
Version: 1.0

Users with admin/manager/member roles, tasks with a linear lifecycle
(pending → in_progress → completed → archived), comments owned by tasks,
table-driven permissions and Celery-backed notification delivery.
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "security", "tasks", "notifications", "dashboard", "api"]
