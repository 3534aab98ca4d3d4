"""Composition of the messages lottery transitions send to entrants."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Optional

from ..models import Event, NotificationType

INVITE_TITLE = "Congratulations!"
INVITE_TEXT = "You've been selected for {event_name}! Tap to accept or decline."

WITHDRAWAL_TITLE = "Invitation Update"
WITHDRAWAL_TEXT = "Your invitation to the event {event_name} has been withdrawn."


@dataclass(frozen=True)
class NotificationMessage:
    """A composed message for one recipient.

    Instances are transient: once handed to a sink the core keeps no
    reference to them.
    """

    recipient_id: str
    type: NotificationType
    event_id: Optional[str]
    title: str
    text: str
    event_name: Optional[str] = None
    sender_id: Optional[str] = None

    def to_json(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["type"] = self.type.value
        return payload


def _event_label(event: Event) -> str:
    return event.name or "this event"


def compose_invite(event: Event, recipient_id: str) -> NotificationMessage:
    return NotificationMessage(
        recipient_id=recipient_id,
        type=NotificationType.INVITE,
        event_id=event.id,
        event_name=event.name,
        title=INVITE_TITLE,
        text=INVITE_TEXT.format(event_name=_event_label(event)),
        sender_id=event.organizer_id,
    )


def compose_withdrawal(event: Event, recipient_id: str) -> NotificationMessage:
    return NotificationMessage(
        recipient_id=recipient_id,
        type=NotificationType.WITHDRAWAL,
        event_id=event.id,
        event_name=event.name,
        title=WITHDRAWAL_TITLE,
        text=WITHDRAWAL_TEXT.format(event_name=_event_label(event)),
        sender_id=event.organizer_id,
    )


def compose_custom(
    event: Event,
    recipient_id: str,
    text: str,
    *,
    title: Optional[str] = None,
    sender_id: Optional[str] = None,
) -> NotificationMessage:
    """Compose an organizer-written message about ``event``.

    ``title`` defaults to the event name; ``sender_id`` to the organizer.
    """

    return NotificationMessage(
        recipient_id=recipient_id,
        type=NotificationType.CUSTOM,
        event_id=event.id,
        event_name=event.name,
        title=title or _event_label(event),
        text=text,
        sender_id=sender_id or event.organizer_id,
    )


__all__ = [
    "NotificationMessage",
    "compose_invite",
    "compose_withdrawal",
    "compose_custom",
]
