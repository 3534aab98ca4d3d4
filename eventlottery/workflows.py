import logging
import random
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from .capacity import CapacityAccountant
from .db.utils import transaction_scope
from .draw import DrawOrchestrator, DrawResult, DrawSelector, LotteryCancellation
from .errors import InvalidRequest, InvalidTransition, NotFound
from .lifecycle import LifecycleManager, TransitionResult
from .models import Entrant, EntrantStatus, Event, EventStatus, Notification
from .models.utils import as_utc
from .notifications import (
    InboxNotificationSink,
    NotificationDispatcher,
    compose_custom,
)
from .repository import SqlAlchemyEntrantRepository

logger = logging.getLogger(__name__)


def _dispatcher_for(
    session: Session, dispatcher: Optional[NotificationDispatcher]
) -> NotificationDispatcher:
    return dispatcher or NotificationDispatcher(InboxNotificationSink(session))


def _lifecycle(
    session: Session, dispatcher: Optional[NotificationDispatcher] = None
) -> LifecycleManager:
    return LifecycleManager(
        SqlAlchemyEntrantRepository(session), _dispatcher_for(session, dispatcher)
    )


def _get_event(
    repository: SqlAlchemyEntrantRepository, event_id: str, transition: str
) -> Event:
    event = repository.get_event(event_id)
    if event is None:
        raise NotFound("Event not found", event_id=event_id, transition=transition)
    return event


def _validate_event_fields(
    name: str,
    capacity: Optional[int],
    waiting_list_limit: Optional[int],
    registration_start: Optional[datetime],
    registration_end: Optional[datetime],
    event_start: Optional[datetime],
    event_end: Optional[datetime],
) -> None:
    if not name or not name.strip():
        raise InvalidRequest("Event name is required", transition="create_event")

    reg_start, reg_end = as_utc(registration_start), as_utc(registration_end)
    ev_start, ev_end = as_utc(event_start), as_utc(event_end)
    if reg_start is not None and reg_end is None:
        raise InvalidRequest(
            "Registration end is required when a registration start is set",
            transition="create_event",
        )
    if reg_start is not None and reg_start >= reg_end:
        raise InvalidRequest(
            "Registration must start before it ends", transition="create_event"
        )
    if ev_start is not None and ev_end is not None and ev_start >= ev_end:
        raise InvalidRequest("Event must start before it ends", transition="create_event")
    if reg_end is not None and ev_start is not None and reg_end > ev_start:
        raise InvalidRequest(
            "Registration must end before the event starts", transition="create_event"
        )

    if capacity is not None and capacity < 0:
        raise InvalidRequest("Capacity cannot be negative", transition="create_event")
    if waiting_list_limit is not None:
        if capacity is None:
            raise InvalidRequest(
                "A waiting list limit requires an event capacity",
                transition="create_event",
            )
        if waiting_list_limit < 1:
            raise InvalidRequest(
                "Waiting list limit must be at least 1", transition="create_event"
            )
        if waiting_list_limit < capacity:
            raise InvalidRequest(
                "Waiting list limit cannot be smaller than the capacity",
                transition="create_event",
            )


def create_event(
    session: Session,
    name: str,
    *,
    organizer_id: Optional[str] = None,
    organizer_name: Optional[str] = None,
    description: Optional[str] = None,
    location: Optional[str] = None,
    capacity: Optional[int] = None,
    waiting_list_limit: Optional[int] = None,
    geolocation_required: bool = False,
    registration_start: Optional[datetime] = None,
    registration_end: Optional[datetime] = None,
    event_start: Optional[datetime] = None,
    event_end: Optional[datetime] = None,
) -> Event:
    """Validate and persist a new open event.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    name : str
        Display name; must not be blank.
    capacity : Optional[int]
        Maximum number of invited plus accepted entrants. ``None`` means no
        limit; ``0`` means no slots at all.
    waiting_list_limit : Optional[int]
        Maximum number of waiting entrants. Requires ``capacity`` and must be
        at least 1 and no smaller than ``capacity``.
    registration_start, registration_end : Optional[datetime]
        Window in which users may join. A start requires an end, and the
        window must close no later than ``event_start``.
    event_start, event_end : Optional[datetime]
        When the event itself takes place.

    Returns
    -------
    Event
        The persisted event with status ``open``.

    Raises
    ------
    InvalidRequest
        If any field fails validation.
    """

    _validate_event_fields(
        name,
        capacity,
        waiting_list_limit,
        registration_start,
        registration_end,
        event_start,
        event_end,
    )

    event = Event(
        name=name.strip(),
        organizer_id=organizer_id,
        organizer_name=organizer_name,
        description=description,
        location=location,
        capacity=capacity,
        waiting_list_limit=waiting_list_limit,
        geolocation_required=geolocation_required,
        registration_start=registration_start,
        registration_end=registration_end,
        event_start=event_start,
        event_end=event_end,
    )
    with transaction_scope(session):
        session.add(event)
    logger.info(f"Created event {event.id} ({event.name}) with capacity {capacity}")
    return event


def _close_event(session: Session, event_id: str, status: EventStatus) -> Event:
    repository = SqlAlchemyEntrantRepository(session)
    with repository.transaction():
        event = repository.get_event(event_id, for_update=True)
        if event is None:
            raise NotFound("Event not found", event_id=event_id, transition=status.value)
        if event.status != EventStatus.OPEN:
            raise InvalidTransition(
                f"Event is already {event.status.value}",
                event_id=event_id,
                transition=status.value,
            )
        event.status = status
    logger.info(f"Event {event_id} is now {status.value}")
    return event


def finalize_event(session: Session, event_id: str) -> Event:
    """Close an open event for good. Accepts and draws are refused afterwards."""
    return _close_event(session, event_id, EventStatus.FINALIZED)


def cancel_event(session: Session, event_id: str) -> Event:
    return _close_event(session, event_id, EventStatus.CANCELLED)


def join_waitlist(
    session: Session,
    event_id: str,
    user_id: str,
    *,
    user_name: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Entrant:
    """Put ``user_id`` on the waiting list of ``event_id``.

    See :meth:`LifecycleManager.join` for the preconditions checked.
    """
    return _lifecycle(session).join(
        event_id,
        user_id,
        user_name=user_name,
        latitude=latitude,
        longitude=longitude,
        now=now,
    )


def leave_waitlist(session: Session, event_id: str, user_id: str) -> TransitionResult:
    return _lifecycle(session).leave(event_id, user_id)


def respond_to_invite(
    session: Session, event_id: str, user_id: str, accept: bool
) -> TransitionResult:
    """Accept or decline an invitation held by ``user_id``.

    Declining frees the slot without drawing a replacement; the organizer
    runs another draw when they want the slot filled.
    """
    return _lifecycle(session).respond(event_id, user_id, accept)


def run_draw(
    session: Session,
    event_id: str,
    requested_count: int,
    *,
    rng: Optional[random.Random] = None,
    stream: bool = False,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> DrawResult:
    """Invite up to ``requested_count`` randomly chosen waiting entrants.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    event_id : str
        Event to draw for.
    requested_count : int
        Number of winners wanted. Clamped to the free capacity and the size
        of the waiting list; see ``DrawResult.actual_count``.
    rng : Optional[random.Random], default: None
        Random source for the selection. Defaults to ``random.SystemRandom``.
    stream : bool, default: False
        Reservoir-sample the waiting list page by page instead of loading it.
    dispatcher : Optional[NotificationDispatcher], default: None
        Where invitations go. Defaults to the in-app inbox.

    Returns
    -------
    DrawResult
        Winners, outcome and any invitations that failed to dispatch.
    """
    orchestrator = DrawOrchestrator(
        SqlAlchemyEntrantRepository(session),
        _dispatcher_for(session, dispatcher),
        selector=DrawSelector(rng),
    )
    return orchestrator.run_draw(event_id, requested_count, stream=stream)


def cancel_invite(
    session: Session,
    event_id: str,
    user_id: str,
    *,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> TransitionResult:
    """Withdraw an entrant's invitation and put them back on the waiting list."""
    return _lifecycle(session, dispatcher).withdraw(event_id, user_id)


def revoke_entrant(
    session: Session,
    event_id: str,
    user_id: str,
    *,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> TransitionResult:
    """Cancel an invited or accepted entrant outright."""
    return _lifecycle(session, dispatcher).revoke(event_id, user_id)


def cancel_lottery(
    session: Session,
    event_id: str,
    *,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> LotteryCancellation:
    orchestrator = DrawOrchestrator(
        SqlAlchemyEntrantRepository(session), _dispatcher_for(session, dispatcher)
    )
    return orchestrator.cancel_lottery(event_id)


def notify_entrant(
    session: Session,
    event_id: str,
    user_id: str,
    text: str,
    *,
    title: Optional[str] = None,
    sender_id: Optional[str] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> bool:
    """Send an organizer-written message to one entrant of ``event_id``.

    Returns ``False`` when the message could not be delivered.
    """
    if not text or not text.strip():
        raise InvalidRequest(
            "Message text is required",
            event_id=event_id,
            user_id=user_id,
            transition="notify",
        )

    repository = SqlAlchemyEntrantRepository(session)
    with transaction_scope(session):
        event = _get_event(repository, event_id, "notify")
        if repository.get(event_id, user_id) is None:
            raise NotFound(
                "Entrant not found",
                event_id=event_id,
                user_id=user_id,
                transition="notify",
            )
    message = compose_custom(event, user_id, text, title=title, sender_id=sender_id)
    return _dispatcher_for(session, dispatcher).dispatch(message)


def notify_entrants_by_status(
    session: Session,
    event_id: str,
    status: EntrantStatus,
    text: str,
    *,
    title: Optional[str] = None,
    sender_id: Optional[str] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> list[str]:
    """Send the same organizer message to every entrant currently in ``status``.

    Returns
    -------
    list[str]
        User ids whose message could not be delivered.
    """
    if not text or not text.strip():
        raise InvalidRequest(
            "Message text is required", event_id=event_id, transition="notify"
        )

    repository = SqlAlchemyEntrantRepository(session)
    with transaction_scope(session):
        event = _get_event(repository, event_id, "notify")
        recipients = [
            entrant.user_id
            for entrant in repository.list_by_status(event_id, EntrantStatus(status))
        ]
    logger.info(
        f"Sending custom message for event {event_id} to {len(recipients)} "
        f"{EntrantStatus(status).value} entrant(s)"
    )
    return _dispatcher_for(session, dispatcher).dispatch_all(
        compose_custom(event, user_id, text, title=title, sender_id=sender_id)
        for user_id in recipients
    )


def event_metrics(session: Session, event_id: str) -> dict[str, Any]:
    """Summarize an event's entrant counts.

    ``available`` is the number of free slots, or ``None`` when the event has
    no capacity limit.
    """
    repository = SqlAlchemyEntrantRepository(session)
    with transaction_scope(session):
        event = _get_event(repository, event_id, "metrics")
        counts = CapacityAccountant(repository).counts(event_id)
    return {
        "event_id": event_id,
        "capacity": event.capacity,
        "waiting_list_limit": event.waiting_list_limit,
        "waiting": counts.waiting,
        "invited": counts.invited,
        "accepted": counts.accepted,
        "declined": counts.declined,
        "cancelled": counts.cancelled,
        "available": counts.remaining_capacity(event.capacity),
    }


def list_entrants(
    session: Session, event_id: str, status: Optional[EntrantStatus] = None
) -> list[Entrant]:
    """Return the event's entrants, oldest registration first.

    When ``status`` is omitted entrants in every status are returned.
    """
    repository = SqlAlchemyEntrantRepository(session)
    with transaction_scope(session):
        _get_event(repository, event_id, "list_entrants")
        if status is not None:
            return repository.list_by_status(event_id, EntrantStatus(status))
        entrants = [
            entrant
            for each in EntrantStatus
            for entrant in repository.list_by_status(event_id, each)
        ]
    entrants.sort(key=lambda e: (as_utc(e.date_registered), e.user_id))
    return entrants


def registration_history(session: Session, user_id: str) -> list[Entrant]:
    """Every entrant record ``user_id`` holds, newest first, with ``event`` loaded."""
    with transaction_scope(session):
        return SqlAlchemyEntrantRepository(session).list_for_user(user_id)


def list_organizer_events(session: Session, organizer_id: str) -> list[Event]:
    with transaction_scope(session):
        return Event.get_by_organizer(session, organizer_id)


def list_notifications(
    session: Session, user_id: str, *, unseen_only: bool = False
) -> list[Notification]:
    with transaction_scope(session):
        return Notification.for_recipient(session, user_id, unseen_only=unseen_only)


def notifications_for_event(session: Session, event_id: str) -> list[Notification]:
    """Every notification sent about ``event_id``, for the organizer's log."""
    with transaction_scope(session):
        return Notification.for_event(session, event_id)


def mark_notification_seen(
    session: Session, notification_id: int, user_id: Optional[str] = None
) -> Notification:
    """Flag a notification as seen.

    When ``user_id`` is given the notification must belong to that user.

    Raises
    ------
    NotFound
        If the notification does not exist or belongs to someone else.
    """
    with transaction_scope(session):
        notification = session.get(Notification, notification_id)
        if notification is None or (
            user_id is not None and notification.recipient_id != user_id
        ):
            raise NotFound(
                "Notification not found",
                event_id=notification.event_id if notification is not None else None,
                user_id=user_id,
                transition="mark_seen",
            )
        notification.seen = True
    return notification
