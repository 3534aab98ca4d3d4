"""Utility helpers for the models package."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional


def new_id() -> str:
    """Return a fresh string identifier for an event row."""

    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite.

    Aware datetimes are converted to UTC; ``None`` passes through.
    """

    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum *values* (``"waiting"``) rather than member names."""

    return [member.value for member in enum_cls]
