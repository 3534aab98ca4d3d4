"""Uniform random selection of draw winners."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Hashable, Iterable, Optional, Sequence, TypeVar

from ..errors import InvalidRequest

T = TypeVar("T", bound=Hashable)


@dataclass(frozen=True)
class Selection:
    """Outcome of one selection.

    Attributes
    ----------
    winners : tuple
        Chosen items in draw order. Never contains duplicates or items that
        were not in the pool.
    requested : int
        Number of winners the caller asked for.
    pool_size : int
        Number of distinct candidates considered.
    remaining_capacity : Optional[int]
        Capacity bound applied, ``None`` when unbounded.
    """

    winners: tuple
    requested: int
    pool_size: int
    remaining_capacity: Optional[int]

    @property
    def empty(self) -> bool:
        """``True`` when nothing could be selected (not an error)."""

        return not self.winners

    @property
    def clamped(self) -> bool:
        """``True`` when fewer winners were chosen than requested."""

        return len(self.winners) < self.requested


def validate_requested(requested: int, *, event_id: Optional[str] = None) -> None:
    """Raise :class:`InvalidRequest` unless ``requested`` is a positive integer."""

    if isinstance(requested, bool) or not isinstance(requested, int):
        raise InvalidRequest(
            f"Number of entrants to draw must be an integer, got {requested!r}",
            event_id=event_id,
            transition="draw",
        )
    if requested <= 0:
        raise InvalidRequest(
            f"Number of entrants to draw must be positive, got {requested}",
            event_id=event_id,
            transition="draw",
        )


def _bound(requested: int, pool_size: int, remaining_capacity: Optional[int]) -> int:
    n = min(requested, pool_size)
    if remaining_capacity is not None:
        n = min(n, remaining_capacity)
    return max(n, 0)


class DrawSelector:
    """Pick a capacity-bounded, uniformly random subset of waiting entrants.

    Parameters
    ----------
    rng : Optional[random.Random], default: None
        Random source. Defaults to :class:`random.SystemRandom`; pass a seeded
        :class:`random.Random` for reproducible draws.
    """

    def __init__(self, rng: Optional[random.Random] = None) -> None:
        self._rng = rng or random.SystemRandom()

    def select(
        self,
        waiting: Sequence[T],
        requested: int,
        remaining_capacity: Optional[int] = None,
    ) -> Selection:
        """Select ``min(requested, len(waiting), remaining_capacity)`` winners.

        Runs a partial Fisher-Yates shuffle over a copy of ``waiting``: only
        the first ``n`` positions are drawn, each uniformly from the items not
        yet placed, so every candidate has probability ``n / len(waiting)``.

        Raises
        ------
        InvalidRequest
            If ``requested`` is not a positive integer.
        """

        validate_requested(requested)
        pool = list(dict.fromkeys(waiting))
        n = _bound(requested, len(pool), remaining_capacity)
        for i in range(n):
            j = self._rng.randrange(i, len(pool))
            pool[i], pool[j] = pool[j], pool[i]
        return Selection(
            winners=tuple(pool[:n]),
            requested=requested,
            pool_size=len(pool),
            remaining_capacity=remaining_capacity,
        )

    def select_from_stream(
        self,
        candidates: Iterable[T],
        requested: int,
        remaining_capacity: Optional[int] = None,
    ) -> Selection:
        """Reservoir-sample winners from an iterable read in one pass.

        Meant for waiting lists read page by page. Keeps at most ``k`` items
        in memory, where ``k`` is ``requested`` bounded by the capacity, and
        gives every distinct candidate the same probability of ending up in
        the reservoir.
        """

        validate_requested(requested)
        k = requested if remaining_capacity is None else min(requested, remaining_capacity)
        k = max(k, 0)
        reservoir: list[T] = []
        seen: set[T] = set()
        for item in candidates:
            if item in seen:
                continue
            seen.add(item)
            if len(reservoir) < k:
                reservoir.append(item)
                continue
            j = self._rng.randrange(len(seen))
            if j < k:
                reservoir[j] = item
        # Reservoir slots keep insertion bias in their order; shuffle so the
        # draw order is random too.
        self._rng.shuffle(reservoir)
        return Selection(
            winners=tuple(reservoir),
            requested=requested,
            pool_size=len(seen),
            remaining_capacity=remaining_capacity,
        )


__all__ = ["DrawSelector", "Selection", "validate_requested"]
