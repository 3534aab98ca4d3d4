"""Entrant lifecycle: the transition table and single-entrant operations."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .capacity import CapacityAccountant
from .errors import (
    CapacityExceeded,
    InvalidRequest,
    InvalidTransition,
    NotFound,
    RegistrationClosed,
)
from .models import COMMITTED_STATUSES, Entrant, EntrantStatus, Event
from .notifications import (
    NotificationDispatcher,
    NotificationMessage,
    compose_withdrawal,
)
from .repository import EntrantRepository

logger = logging.getLogger(__name__)


class Transition(str, enum.Enum):
    INVITE = "invite"
    ACCEPT = "accept"
    DECLINE = "decline"
    WITHDRAW = "withdraw"
    REVOKE = "revoke"
    LEAVE = "leave"


@dataclass(frozen=True)
class TransitionRule:
    """One row of the transition table.

    Attributes
    ----------
    sources : frozenset[EntrantStatus]
        Statuses the transition may start from.
    target : Optional[EntrantStatus]
        Resulting status; ``None`` means the entrant record is deleted.
    requires_open_event : bool
        Whether the event must still be open.
    draw_only : bool
        Whether only the draw engine may apply the transition.
    notify : Optional[Callable]
        Composer for the message sent to the entrant once the change commits.
    """

    sources: frozenset
    target: Optional[EntrantStatus]
    requires_open_event: bool = False
    draw_only: bool = False
    notify: Optional[Callable[[Event, str], NotificationMessage]] = None


TRANSITIONS: dict[Transition, TransitionRule] = {
    Transition.INVITE: TransitionRule(
        sources=frozenset({EntrantStatus.WAITING}),
        target=EntrantStatus.INVITED,
        requires_open_event=True,
        draw_only=True,
    ),
    Transition.ACCEPT: TransitionRule(
        sources=frozenset({EntrantStatus.INVITED}),
        target=EntrantStatus.ACCEPTED,
        requires_open_event=True,
    ),
    Transition.DECLINE: TransitionRule(
        sources=frozenset({EntrantStatus.INVITED}),
        target=EntrantStatus.DECLINED,
    ),
    Transition.WITHDRAW: TransitionRule(
        sources=frozenset(
            {
                EntrantStatus.INVITED,
                EntrantStatus.ACCEPTED,
                EntrantStatus.DECLINED,
                EntrantStatus.CANCELLED,
            }
        ),
        target=EntrantStatus.WAITING,
        notify=compose_withdrawal,
    ),
    Transition.REVOKE: TransitionRule(
        sources=frozenset({EntrantStatus.INVITED, EntrantStatus.ACCEPTED}),
        target=EntrantStatus.CANCELLED,
        notify=compose_withdrawal,
    ),
    Transition.LEAVE: TransitionRule(
        sources=frozenset({EntrantStatus.WAITING}),
        target=None,
    ),
}


def resolve(current: EntrantStatus, transition: Transition) -> Optional[EntrantStatus]:
    """Return the status ``transition`` leads to from ``current``.

    ``None`` means the record is deleted. Every pair outside the table
    raises, so no combination is ever a silent no-op.

    Raises
    ------
    InvalidTransition
        If ``transition`` is not allowed from ``current``.
    """

    transition = Transition(transition)
    rule = TRANSITIONS[transition]
    if current not in rule.sources:
        raise InvalidTransition(
            f"Cannot {transition.value} an entrant who is {current.value}",
            transition=transition.value,
        )
    return rule.target


def _committed_delta(previous: EntrantStatus, target: Optional[EntrantStatus]) -> int:
    before = 1 if previous in COMMITTED_STATUSES else 0
    after = 1 if target in COMMITTED_STATUSES else 0
    return after - before


@dataclass(frozen=True)
class TransitionResult:
    """What a committed single-entrant operation did.

    ``new_status`` is ``None`` when the record was deleted. ``notified`` is
    ``None`` when the transition sends no message, otherwise whether the
    message was handed to the sink.
    """

    event_id: str
    user_id: str
    transition: str
    previous_status: Optional[EntrantStatus]
    new_status: Optional[EntrantStatus]
    notified: Optional[bool] = None


class LifecycleManager:
    """Validate and apply entrant-initiated and organizer-initiated transitions.

    Each operation runs in one repository transaction and checks, in order,
    that the event exists, that the transition is allowed from the entrant's
    stored status, and that committed entrants stay within capacity. Status
    writes are compare-and-set on the status read at the start, so a
    concurrent change surfaces as :class:`InvalidTransition`.

    Parameters
    ----------
    repository : EntrantRepository
        Store of events and entrants.
    dispatcher : Optional[NotificationDispatcher], default: None
        Receives withdrawal messages. Defaults to a dispatcher that drops them.
    accountant : Optional[CapacityAccountant], default: None
        Capacity projection over ``repository``.
    """

    def __init__(
        self,
        repository: EntrantRepository,
        dispatcher: Optional[NotificationDispatcher] = None,
        accountant: Optional[CapacityAccountant] = None,
    ) -> None:
        self._repository = repository
        self._dispatcher = dispatcher or NotificationDispatcher()
        self._accountant = accountant or CapacityAccountant(repository)

    def _require_event(self, event_id: str, transition: str) -> Event:
        event = self._repository.get_event(event_id, for_update=True)
        if event is None:
            raise NotFound(
                "Event not found", event_id=event_id, transition=transition
            )
        return event

    def join(
        self,
        event_id: str,
        user_id: str,
        *,
        user_name: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> Entrant:
        """Add ``user_id`` to the event's waiting list.

        Raises
        ------
        InvalidRequest
            If ``user_id`` is empty, or the event requires a location and
            none was given.
        NotFound
            If the event does not exist.
        RegistrationClosed
            If the event is not open or ``now`` is outside its registration
            window.
        DuplicateEntrant
            If the user already holds an entrant record for the event.
        CapacityExceeded
            If the waiting list has reached its limit.
        """

        if not user_id:
            raise InvalidRequest(
                "A user id is required to join", event_id=event_id, transition="join"
            )
        if (latitude is None) != (longitude is None):
            raise InvalidRequest(
                "Latitude and longitude must be given together",
                event_id=event_id,
                user_id=user_id,
                transition="join",
            )

        with self._repository.transaction():
            event = self._require_event(event_id, "join")
            if not event.is_open:
                raise RegistrationClosed(
                    f"Event is {event.status.value} and no longer accepts entrants",
                    event_id=event_id,
                    user_id=user_id,
                    transition="join",
                )
            state = event.registration_state(now)
            if state != "open":
                raise RegistrationClosed(
                    "Registration has not started yet"
                    if state == "not_started"
                    else "Registration has ended",
                    event_id=event_id,
                    user_id=user_id,
                    transition="join",
                )
            if event.geolocation_required and latitude is None:
                raise InvalidRequest(
                    "This event requires a location to join",
                    event_id=event_id,
                    user_id=user_id,
                    transition="join",
                )
            if event.waiting_list_limit is not None:
                waiting = self._accountant.counts(event_id).waiting
                if waiting >= event.waiting_list_limit:
                    raise CapacityExceeded(
                        "The waiting list is full",
                        event_id=event_id,
                        user_id=user_id,
                        transition="join",
                    )
            entrant = self._repository.put(
                Entrant(
                    event_id=event_id,
                    user_id=user_id,
                    user_name=user_name,
                    date_registered=now,
                    latitude=latitude,
                    longitude=longitude,
                )
            )

        logger.info(f"User {user_id} joined the waiting list of event {event_id}")
        return entrant

    def accept(self, event_id: str, user_id: str) -> TransitionResult:
        return self.apply(event_id, user_id, Transition.ACCEPT)

    def decline(self, event_id: str, user_id: str) -> TransitionResult:
        """Decline an invitation. The freed slot is not re-drawn automatically."""

        return self.apply(event_id, user_id, Transition.DECLINE)

    def respond(self, event_id: str, user_id: str, accept: bool) -> TransitionResult:
        return self.accept(event_id, user_id) if accept else self.decline(event_id, user_id)

    def withdraw(self, event_id: str, user_id: str) -> TransitionResult:
        """Organizer action: move the entrant back to the waiting list."""

        return self.apply(event_id, user_id, Transition.WITHDRAW)

    def revoke(self, event_id: str, user_id: str) -> TransitionResult:
        """Organizer action: cancel the entrant's invitation or acceptance."""

        return self.apply(event_id, user_id, Transition.REVOKE)

    def leave(self, event_id: str, user_id: str) -> TransitionResult:
        """Remove a waiting entrant. Leaving twice raises :class:`NotFound`."""

        return self.apply(event_id, user_id, Transition.LEAVE)

    def apply(
        self, event_id: str, user_id: str, transition: Transition
    ) -> TransitionResult:
        """Apply one table-driven transition to a single entrant.

        Raises
        ------
        NotFound
            If the event or the entrant does not exist.
        InvalidTransition
            If the transition is not allowed from the stored status, needs
            an open event that is no longer open, or is reserved for draws.
        CapacityExceeded
            If the write would overcommit the event.
        """

        transition = Transition(transition)
        rule = TRANSITIONS[transition]

        with self._repository.transaction():
            event = self._require_event(event_id, transition.value)
            if rule.draw_only:
                raise InvalidTransition(
                    f"{transition.value} is only applied by a draw",
                    event_id=event_id,
                    user_id=user_id,
                    transition=transition.value,
                )
            entrant = self._repository.get(event_id, user_id)
            if entrant is None:
                raise NotFound(
                    "Entrant not found",
                    event_id=event_id,
                    user_id=user_id,
                    transition=transition.value,
                )
            previous = entrant.status
            try:
                target = resolve(previous, transition)
            except InvalidTransition as exc:
                exc.event_id, exc.user_id = event_id, user_id
                raise
            if rule.requires_open_event and not event.is_open:
                raise InvalidTransition(
                    f"Event is {event.status.value}",
                    event_id=event_id,
                    user_id=user_id,
                    transition=transition.value,
                )

            if target is None:
                if not self._repository.delete(event_id, user_id, expected_status=previous):
                    raise NotFound(
                        "Entrant not found",
                        event_id=event_id,
                        user_id=user_id,
                        transition=transition.value,
                    )
            else:
                self._repository.update_status(
                    event_id, user_id, target, expected_status=previous
                )
                if _committed_delta(previous, target) > 0:
                    self._accountant.ensure_within_capacity(
                        event, transition=transition.value
                    )

        logger.info(
            f"Entrant {user_id} of event {event_id}: {transition.value} "
            f"({previous.value} -> {target.value if target else 'deleted'})"
        )

        notified: Optional[bool] = None
        if rule.notify is not None:
            notified = self._dispatcher.dispatch(rule.notify(event, user_id))
        return TransitionResult(
            event_id=event_id,
            user_id=user_id,
            transition=transition.value,
            previous_status=previous,
            new_status=target,
            notified=notified,
        )


__all__ = [
    "LifecycleManager",
    "Transition",
    "TransitionResult",
    "TransitionRule",
    "TRANSITIONS",
    "resolve",
]
