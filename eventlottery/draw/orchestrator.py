"""Coordination of a complete lottery draw for one event."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .selector import DrawSelector, Selection, validate_requested
from ..capacity import CapacityAccountant
from ..errors import EmptyWaitlist, InvalidTransition, NotFound
from ..models import EntrantStatus, Event
from ..models.utils import utcnow
from ..notifications import NotificationDispatcher, compose_invite, compose_withdrawal
from ..repository import EntrantRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DrawRequest:
    """A request to invite ``number_requested`` waiting entrants of an event."""

    event_id: str
    number_requested: int
    timestamp: datetime = field(default_factory=utcnow)


class DrawOutcome(str, enum.Enum):
    DRAWN = "drawn"
    EMPTY_SELECTION = "empty_selection"


@dataclass(frozen=True)
class DrawResult:
    """Outcome of a committed draw.

    Attributes
    ----------
    event_id : str
        Event the draw ran against.
    winners : frozenset[str]
        User ids moved from waiting to invited.
    requested : int
        Number of winners asked for.
    remaining_capacity : Optional[int]
        Free slots observed before the draw, ``None`` for no limit.
    outcome : DrawOutcome
        ``EMPTY_SELECTION`` when people were waiting but no slot was free.
    notification_failures : tuple[str, ...]
        Winners whose invite could not be handed to the notification sink.
        Their invitation stands regardless.
    """

    event_id: str
    winners: frozenset
    requested: int
    remaining_capacity: Optional[int]
    outcome: DrawOutcome
    notification_failures: tuple = ()

    @property
    def actual_count(self) -> int:
        return len(self.winners)

    @property
    def clamped(self) -> bool:
        return self.actual_count < self.requested


@dataclass(frozen=True)
class LotteryCancellation:
    """Entrants returned to the waiting list when a lottery is called off."""

    event_id: str
    withdrawn: frozenset
    notification_failures: tuple = ()


class DrawOrchestrator:
    """Run draws: read, bound by capacity, select, transition, notify.

    Everything up to and including the status writes happens in one
    repository transaction with the event row locked, so concurrent draws on
    the same event serialize and a failure leaves no entrant half-updated.
    Invitations are dispatched only after that transaction has finished.

    Parameters
    ----------
    repository : EntrantRepository
        Store of events and entrants.
    dispatcher : Optional[NotificationDispatcher], default: None
        Receives invite and withdrawal messages.
    selector : Optional[DrawSelector], default: None
        Random selection strategy. Pass one built on a seeded
        :class:`random.Random` for reproducible draws.
    accountant : Optional[CapacityAccountant], default: None
        Capacity projection over ``repository``.
    """

    def __init__(
        self,
        repository: EntrantRepository,
        dispatcher: Optional[NotificationDispatcher] = None,
        selector: Optional[DrawSelector] = None,
        accountant: Optional[CapacityAccountant] = None,
    ) -> None:
        self._repository = repository
        self._dispatcher = dispatcher or NotificationDispatcher()
        self._selector = selector or DrawSelector()
        self._accountant = accountant or CapacityAccountant(repository)

    def run_draw(
        self, event_id: str, requested: int, *, stream: bool = False
    ) -> DrawResult:
        return self.run(DrawRequest(event_id=event_id, number_requested=requested), stream=stream)

    def run(self, request: DrawRequest, *, stream: bool = False) -> DrawResult:
        """Invite up to ``request.number_requested`` waiting entrants at random.

        Parameters
        ----------
        request : DrawRequest
            Event and number of winners wanted.
        stream : bool, default: False
            Read the waiting list page by page and reservoir-sample it instead
            of loading the whole list.

        Returns
        -------
        DrawResult
            Winners and outcome. Requests larger than the free capacity or
            the waiting list are clamped, not rejected.

        Raises
        ------
        InvalidRequest
            If the requested count is not positive. Nothing is read.
        NotFound
            If the event does not exist.
        InvalidTransition
            If the event is no longer open, or an entrant's status changed
            under the draw.
        EmptyWaitlist
            If nobody is waiting. Nothing is changed.
        CapacityExceeded
            If the writes would overcommit the event. They are rolled back.
        """

        event_id = request.event_id
        validate_requested(request.number_requested, event_id=event_id)

        with self._repository.transaction():
            event = self._require_open_event(event_id)
            counts = self._accountant.counts(event_id)
            remaining = counts.remaining_capacity(event.capacity)
            selection = self._select(event_id, request.number_requested, remaining, stream)
            if selection.pool_size == 0:
                raise EmptyWaitlist(
                    "Nobody is on the waiting list yet, so there is no one to draw",
                    event_id=event_id,
                    transition="draw",
                )
            if not selection.empty:
                self._repository.batch_update_status(
                    event_id,
                    selection.winners,
                    EntrantStatus.INVITED,
                    expected_status=EntrantStatus.WAITING,
                )
                self._accountant.ensure_within_capacity(event, transition="draw")

        if selection.empty:
            logger.info(
                f"Draw for event {event_id} selected nobody: "
                f"{selection.pool_size} waiting, remaining capacity {remaining}"
            )
            return DrawResult(
                event_id=event_id,
                winners=frozenset(),
                requested=request.number_requested,
                remaining_capacity=remaining,
                outcome=DrawOutcome.EMPTY_SELECTION,
            )

        logger.info(
            f"Draw for event {event_id} invited {len(selection.winners)} of "
            f"{selection.pool_size} waiting (requested {request.number_requested}, "
            f"remaining capacity {remaining})"
        )
        failures = self._dispatcher.dispatch_all(
            compose_invite(event, user_id) for user_id in selection.winners
        )
        return DrawResult(
            event_id=event_id,
            winners=frozenset(selection.winners),
            requested=request.number_requested,
            remaining_capacity=remaining,
            outcome=DrawOutcome.DRAWN,
            notification_failures=tuple(failures),
        )

    def cancel_lottery(self, event_id: str) -> LotteryCancellation:
        """Return every invited entrant of the event to the waiting list.

        The status change is one all-or-nothing batch; each affected entrant
        then gets a withdrawal message. Accepted entrants are left alone.

        Raises
        ------
        NotFound
            If the event does not exist.
        """

        with self._repository.transaction():
            event = self._repository.get_event(event_id, for_update=True)
            if event is None:
                raise NotFound("Event not found", event_id=event_id, transition="cancel_lottery")
            invited = [
                entrant.user_id
                for entrant in self._repository.list_by_status(event_id, EntrantStatus.INVITED)
            ]
            self._repository.batch_update_status(
                event_id,
                invited,
                EntrantStatus.WAITING,
                expected_status=EntrantStatus.INVITED,
            )

        logger.info(f"Lottery for event {event_id} cancelled: {len(invited)} invitation(s) withdrawn")
        failures = self._dispatcher.dispatch_all(
            compose_withdrawal(event, user_id) for user_id in invited
        )
        return LotteryCancellation(
            event_id=event_id,
            withdrawn=frozenset(invited),
            notification_failures=tuple(failures),
        )

    def _require_open_event(self, event_id: str) -> Event:
        event = self._repository.get_event(event_id, for_update=True)
        if event is None:
            raise NotFound("Event not found", event_id=event_id, transition="draw")
        if not event.is_open:
            raise InvalidTransition(
                f"Cannot draw for an event that is {event.status.value}",
                event_id=event_id,
                transition="draw",
            )
        return event

    def _select(
        self,
        event_id: str,
        requested: int,
        remaining: Optional[int],
        stream: bool,
    ) -> Selection:
        if stream:
            candidates = (
                entrant.user_id
                for entrant in self._repository.iter_by_status(event_id, EntrantStatus.WAITING)
            )
            return self._selector.select_from_stream(candidates, requested, remaining)
        waiting = [
            entrant.user_id
            for entrant in self._repository.list_by_status(event_id, EntrantStatus.WAITING)
        ]
        logger.debug(f"Read {len(waiting)} waiting entrant(s) for event {event_id}")
        return self._selector.select(waiting, requested, remaining)


__all__ = [
    "DrawOrchestrator",
    "DrawOutcome",
    "DrawRequest",
    "DrawResult",
    "LotteryCancellation",
]
