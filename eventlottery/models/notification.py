"""Database model for delivered notifications (the per-user inbox)."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column

from .base import Base
from .utils import enum_values, utcnow
from ..db.utils import dt_iso


class NotificationType(str, enum.Enum):
    INVITE = "invite"
    WITHDRAWAL = "withdrawal"
    CUSTOM = "custom"


class Notification(Base):
    """A message stored for its recipient once dispatched."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    recipient_id: Mapped[str] = mapped_column(String(128), nullable=False)
    """User id of the recipient."""

    event_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("events.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    """Event that triggered the message; kept nullable so inbox rows outlive the event."""

    event_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    type: Mapped[NotificationType] = mapped_column(
        SAEnum(
            NotificationType,
            name="notification_type",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        nullable=False,
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    sender_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    """Organizer (or system) that caused the message."""

    seen: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_notifications_recipient_id_seen", "recipient_id", "seen"),
    )

    def __init__(
        self,
        *,
        recipient_id: str,
        type: NotificationType,
        title: str,
        message: str,
        event_id: Optional[str] = None,
        event_name: Optional[str] = None,
        sender_id: Optional[str] = None,
        seen: bool = False,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.recipient_id = recipient_id
        self.type = type
        self.title = title
        self.message = message
        self.event_id = event_id
        self.event_name = event_name
        self.sender_id = sender_id
        self.seen = seen
        self.created_at = created_at or utcnow()

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Notification(id={id}, recipient_id={recipient}, type={type}, seen={seen})>".format(
            id=self.id,
            recipient=self.recipient_id,
            type=self.type.value if self.type else None,
            seen=self.seen,
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "event_id": self.event_id,
            "event_name": self.event_name,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "sender_id": self.sender_id,
            "seen": self.seen,
            "created_at": dt_iso(self.created_at),
        }

    @classmethod
    def for_recipient(
        cls, session: Session, recipient_id: str, *, unseen_only: bool = False
    ) -> list["Notification"]:
        """Return ``recipient_id``'s notifications, newest first."""

        stmt = select(cls).where(cls.recipient_id == recipient_id)
        if unseen_only:
            stmt = stmt.where(cls.seen.is_(False))
        stmt = stmt.order_by(cls.created_at.desc(), cls.id.desc())
        return list(session.scalars(stmt).all())

    @classmethod
    def for_event(cls, session: Session, event_id: str) -> list["Notification"]:
        """Return every notification sent about ``event_id``, newest first."""

        stmt = (
            select(cls)
            .where(cls.event_id == event_id)
            .order_by(cls.created_at.desc(), cls.id.desc())
        )
        return list(session.scalars(stmt).all())


__all__ = ["Notification", "NotificationType"]
