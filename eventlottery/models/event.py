"""Database model for lottery events."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SAEnum,
    Integer,
    String,
    Text,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import Base
from .utils import as_utc, enum_values, new_id, utcnow
from ..db.utils import dt_iso

if TYPE_CHECKING:
    from .entrant import Entrant


class EventStatus(str, enum.Enum):
    OPEN = "open"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"


class Event(Base):
    """A limited-capacity event that fills its slots by lottery."""

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    """Primary key (UUID string)."""

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    """Display name used in notification text."""

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    organizer_id: Mapped[Optional[str]] = mapped_column(
        String(128), nullable=True, index=True
    )
    """User id of the organizer; used as the sender of lottery notifications."""

    organizer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Maximum number of committed (invited + accepted) entrants. ``None`` means no limit."""

    waiting_list_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Maximum number of entrants allowed to wait at once. ``None`` means no limit."""

    geolocation_required: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    """When set, joining the waiting list requires a location."""

    status: Mapped[EventStatus] = mapped_column(
        SAEnum(
            EventStatus,
            name="event_status",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
        default=EventStatus.OPEN,
    )

    registration_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    registration_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    event_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    event_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    entrants: Mapped[list["Entrant"]] = relationship(
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __init__(
        self,
        *,
        name: str,
        id: Optional[str] = None,
        description: Optional[str] = None,
        organizer_id: Optional[str] = None,
        organizer_name: Optional[str] = None,
        location: Optional[str] = None,
        capacity: Optional[int] = None,
        waiting_list_limit: Optional[int] = None,
        geolocation_required: bool = False,
        status: EventStatus = EventStatus.OPEN,
        registration_start: Optional[datetime] = None,
        registration_end: Optional[datetime] = None,
        event_start: Optional[datetime] = None,
        event_end: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.id = id or new_id()
        self.name = name
        self.description = description
        self.organizer_id = organizer_id
        self.organizer_name = organizer_name
        self.location = location
        self.capacity = capacity
        self.waiting_list_limit = waiting_list_limit
        self.geolocation_required = geolocation_required
        self.status = status
        self.registration_start = registration_start
        self.registration_end = registration_end
        self.event_start = event_start
        self.event_end = event_end
        self.created_at = created_at or utcnow()

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Event(id={id}, name={name}, status={status}, capacity={capacity})>".format(
            id=self.id,
            name=self.name,
            status=self.status.value if self.status else None,
            capacity=self.capacity,
        )

    @property
    def is_open(self) -> bool:
        return self.status == EventStatus.OPEN

    def registration_state(self, now: Optional[datetime] = None) -> str:
        """Return ``"not_started"``, ``"open"`` or ``"ended"`` for ``now``.

        Events without a registration window are always ``"open"``.
        """

        now = as_utc(now) or utcnow()
        start = as_utc(self.registration_start)
        end = as_utc(self.registration_end)
        if start is not None and now < start:
            return "not_started"
        if end is not None and now >= end:
            return "ended"
        return "open"

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "organizer_id": self.organizer_id,
            "organizer_name": self.organizer_name,
            "location": self.location,
            "capacity": self.capacity,
            "waiting_list_limit": self.waiting_list_limit,
            "geolocation_required": self.geolocation_required,
            "status": self.status.value,
            "registration_start": dt_iso(self.registration_start),
            "registration_end": dt_iso(self.registration_end),
            "event_start": dt_iso(self.event_start),
            "event_end": dt_iso(self.event_end),
            "created_at": dt_iso(self.created_at),
        }

    @classmethod
    def get_by_organizer(cls, session: Session, organizer_id: str) -> list["Event"]:
        """Return the events created by ``organizer_id``, newest first."""

        stmt = (
            select(cls)
            .where(cls.organizer_id == organizer_id)
            .order_by(cls.created_at.desc(), cls.id.asc())
        )
        return list(session.scalars(stmt).all())


__all__ = ["Event", "EventStatus"]
