"""
Dashboard Aggregator — read-only summary of the viewer's visible tasks.

    counts_by_status     all four statuses, zero-filled
    overdue_count        due_at < now and status not completed/archived
    assigned_incomplete  viewer's open assignments, soonest due first
    recent_activity      last N updated tasks, ties broken by id ascending

Visibility is the same scope as the view permission.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from tasktrack.db.models import OPEN_STATUSES, TASK_STATUSES, Task
from tasktrack.engine.config import DashboardConfig
from tasktrack.engine.context import ExecutionContext, utcnow
from tasktrack.security.permissions import require_authenticated, visible_tasks

logger = logging.getLogger("tasktrack.dashboard.aggregator")


@dataclass
class DashboardSummary:
    counts_by_status: Dict[str, int]
    overdue_count: int
    assigned_incomplete: List[Task] = field(default_factory=list)
    recent_activity: List[Task] = field(default_factory=list)


class DashboardAggregator:

    def __init__(
        self,
        session: Session,
        settings: Optional[DashboardConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session = session
        self._settings = settings or DashboardConfig()
        self._clock = clock

    def summarize(self, viewer: ExecutionContext) -> DashboardSummary:
        require_authenticated(viewer)
        now = self._clock()

        counts = {status: 0 for status in TASK_STATUSES}
        rows = (
            visible_tasks(self._session.query(Task.status, func.count(Task.id)), viewer)
            .group_by(Task.status)
            .all()
        )
        for status, count in rows:
            counts[status] = count

        overdue = (
            visible_tasks(self._session.query(func.count(Task.id)), viewer)
            .filter(
                Task.due_at.isnot(None),
                Task.due_at < now,
                Task.status.in_(OPEN_STATUSES),
            )
            .scalar()
        )

        assigned = (
            visible_tasks(self._session.query(Task), viewer)
            .filter(Task.assignee_id == viewer.actor_id, Task.status.in_(OPEN_STATUSES))
            .order_by(Task.due_at.is_(None), Task.due_at.asc(), Task.id.asc())
            .all()
        )

        recent = (
            visible_tasks(self._session.query(Task), viewer)
            .order_by(Task.updated_at.desc(), Task.id.asc())
            .limit(self._settings.recent_limit)
            .all()
        )

        logger.debug(f"Dashboard for actor {viewer.actor_id}: {counts}, overdue={overdue}")
        return DashboardSummary(
            counts_by_status=counts,
            overdue_count=overdue or 0,
            assigned_incomplete=assigned,
            recent_activity=recent,
        )
