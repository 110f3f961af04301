"""
TaskTrack Database Base — SQLAlchemy declarative base, mixins, column types.

Provides:
- Base: SQLAlchemy declarative base for all models
- UTCDateTime: timezone-aware DateTime that stays aware on SQLite
- TimestampMixin: created_at, updated_at
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Column, DateTime
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from tasktrack.engine.context import utcnow


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all TaskTrack models."""
    pass


class UTCDateTime(TypeDecorator):
    """
    Stores datetimes as UTC and always returns aware values.

    SQLite drops tzinfo on the way back; values read without one are UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"naive datetime not allowed: {value!r}")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class TimestampMixin:
    """Adds created_at, updated_at columns."""
    created_at = Column(UTCDateTime(), default=utcnow, nullable=False, index=True)
    updated_at = Column(UTCDateTime(), default=utcnow, nullable=False, index=True)
