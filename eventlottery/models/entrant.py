"""Database model for a user's participation in one event."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .utils import enum_values, utcnow
from ..db.utils import dt_iso

if TYPE_CHECKING:
    from .event import Event


class EntrantStatus(str, enum.Enum):
    WAITING = "waiting"
    INVITED = "invited"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"


# Statuses that hold one of the event's slots.
COMMITTED_STATUSES = frozenset({EntrantStatus.INVITED, EntrantStatus.ACCEPTED})


class Entrant(Base):
    """A user's entry for one event, keyed by ``(event_id, user_id)``."""

    __tablename__ = "entrants"

    event_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("events.id", ondelete="CASCADE"),
        primary_key=True,
    )
    """Foreign key referencing :class:`Event`."""

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    """Identifier of the user. One entrant per user per event."""

    user_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Display name captured at join time."""

    status: Mapped[EntrantStatus] = mapped_column(
        SAEnum(
            EntrantStatus,
            name="entrant_status",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
        default=EntrantStatus.WAITING,
    )
    """Current lifecycle status."""

    date_registered: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    """When the user joined the waiting list."""

    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    """Bumped on every status change."""

    event: Mapped["Event"] = relationship(back_populates="entrants")

    __table_args__ = (
        Index("ix_entrants_event_id_status", "event_id", "status"),
        Index("ix_entrants_user_id", "user_id"),
    )

    def __init__(
        self,
        *,
        event_id: str,
        user_id: str,
        user_name: Optional[str] = None,
        status: EntrantStatus = EntrantStatus.WAITING,
        date_registered: Optional[datetime] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        updated_at: Optional[datetime] = None,
    ) -> None:
        self.event_id = event_id
        self.user_id = user_id
        self.user_name = user_name
        self.status = status
        self.date_registered = date_registered or utcnow()
        self.latitude = latitude
        self.longitude = longitude
        self.updated_at = updated_at or self.date_registered

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Entrant(event_id={event_id}, user_id={user_id}, status={status})>".format(
            event_id=self.event_id,
            user_id=self.user_id,
            status=self.status.value if self.status else None,
        )

    @property
    def geolocation(self) -> Optional[tuple[float, float]]:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)

    @property
    def holds_slot(self) -> bool:
        return self.status in COMMITTED_STATUSES

    def to_json(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "status": self.status.value,
            "date_registered": dt_iso(self.date_registered),
            "geolocation": (
                {"latitude": self.latitude, "longitude": self.longitude}
                if self.geolocation is not None
                else None
            ),
            "updated_at": dt_iso(self.updated_at),
        }


__all__ = ["Entrant", "EntrantStatus", "COMMITTED_STATUSES"]
