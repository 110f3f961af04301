"""TaskTrack Dashboard — per-viewer summary counts and activity."""

from tasktrack.dashboard.aggregator import DashboardAggregator, DashboardSummary  # noqa: F401

__all__ = ["DashboardAggregator", "DashboardSummary"]
