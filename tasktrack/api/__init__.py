"""TaskTrack HTTP API (FastAPI)."""

from tasktrack.api.app import create_app

__all__ = ["create_app"]
