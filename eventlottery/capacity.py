"""Capacity accounting over an event's entrants."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .errors import CapacityExceeded, DataUnavailable
from .models import EntrantStatus, Event
from .repository import EntrantRepository


@dataclass(frozen=True)
class EntrantCounts:
    """Per-status entrant counts read from one aggregate query.

    Attributes
    ----------
    accepted : int
        Entrants who accepted their invitation.
    invited : int
        Entrants holding an unanswered invitation.
    waiting : int
        Entrants still on the waiting list.
    declined : int
        Entrants who declined.
    cancelled : int
        Entrants whose invitation was revoked.
    """

    accepted: int
    invited: int
    waiting: int
    declined: int = 0
    cancelled: int = 0

    @property
    def committed(self) -> int:
        """Entrants holding a slot: accepted plus invited."""

        return self.accepted + self.invited

    def remaining_capacity(self, capacity: Optional[int]) -> Optional[int]:
        """Slots still free under ``capacity``; ``None`` when there is no limit."""

        if capacity is None:
            return None
        return max(capacity - self.committed, 0)


class CapacityAccountant:
    """Read-only projection of an event's capacity usage."""

    def __init__(self, repository: EntrantRepository) -> None:
        self._repository = repository

    def counts(self, event_id: str) -> EntrantCounts:
        """Return the current per-status counts for ``event_id``.

        Raises
        ------
        DataUnavailable
            If the store cannot be read. A failed read is never reported as
            zero entrants.
        """

        raw = self._repository.aggregate_counts(event_id)
        try:
            return EntrantCounts(
                accepted=raw[EntrantStatus.ACCEPTED],
                invited=raw[EntrantStatus.INVITED],
                waiting=raw[EntrantStatus.WAITING],
                declined=raw.get(EntrantStatus.DECLINED, 0),
                cancelled=raw.get(EntrantStatus.CANCELLED, 0),
            )
        except KeyError as exc:
            raise DataUnavailable(
                f"Aggregate count for {exc.args[0]} was not returned",
                event_id=event_id,
                transition="count",
            ) from exc

    def remaining_capacity(self, event_id: str, capacity: Optional[int]) -> Optional[int]:
        return self.counts(event_id).remaining_capacity(capacity)

    def ensure_within_capacity(self, event: Event, *, transition: str) -> EntrantCounts:
        """Re-read the counts and fail if ``event`` is now overcommitted.

        Called after a write that may add committed entrants and before the
        surrounding transaction commits, so raising here undoes the write.

        Raises
        ------
        CapacityExceeded
            If ``accepted + invited`` exceeds ``event.capacity``.
        """

        counts = self.counts(event.id)
        if event.capacity is not None and counts.committed > event.capacity:
            raise CapacityExceeded(
                f"Event capacity of {event.capacity} would be exceeded "
                f"({counts.committed} committed entrants)",
                event_id=event.id,
                transition=transition,
            )
        return counts


__all__ = ["CapacityAccountant", "EntrantCounts"]
