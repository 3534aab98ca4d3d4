"""Storage boundary for events and their entrants.

:class:`EntrantRepository` is the contract the lifecycle and draw engine are
written against. :class:`SqlAlchemyEntrantRepository` implements it on a
SQLAlchemy session; tests use an in-memory implementation of the same
contract.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import ContextManager, Iterable, Iterator, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session, joinedload

from .db.utils import transaction_scope
from .errors import DataUnavailable, DuplicateEntrant, InvalidTransition, NotFound
from .models import Entrant, EntrantStatus, Event
from .models.utils import utcnow

logger = logging.getLogger(__name__)


class EntrantRepository(ABC):
    """Entrant and event storage scoped by event id.

    Every method either succeeds completely or raises without having changed
    anything. Read failures raise :class:`~eventlottery.errors.DataUnavailable`;
    nothing is ever reported as an empty result because a read failed.
    """

    @abstractmethod
    def transaction(self) -> ContextManager[None]:
        """Group the calls made inside the block into one all-or-nothing unit."""

    @abstractmethod
    def get_event(self, event_id: str, *, for_update: bool = False) -> Optional[Event]:
        """Return the event, locking its row when ``for_update`` is set."""

    @abstractmethod
    def get(self, event_id: str, user_id: str) -> Optional[Entrant]:
        ...

    @abstractmethod
    def list_by_status(self, event_id: str, status: EntrantStatus) -> list[Entrant]:
        """Return the event's entrants in ``status``, oldest registration first."""

    def iter_by_status(
        self, event_id: str, status: EntrantStatus, *, page_size: int = 500
    ) -> Iterator[Entrant]:
        """Stream entrants in ``status`` without materializing the whole list."""

        yield from self.list_by_status(event_id, status)

    @abstractmethod
    def list_for_user(self, user_id: str) -> list[Entrant]:
        """Return every entrant record ``user_id`` holds, newest first."""

    @abstractmethod
    def put(self, entrant: Entrant) -> Entrant:
        """Insert a new entrant. Raises :class:`DuplicateEntrant` if one exists."""

    @abstractmethod
    def update_status(
        self,
        event_id: str,
        user_id: str,
        new_status: EntrantStatus,
        *,
        expected_status: Optional[EntrantStatus] = None,
    ) -> Entrant:
        """Set one entrant's status.

        When ``expected_status`` is given the write only happens if the
        stored status still matches it; otherwise :class:`InvalidTransition`
        is raised.
        """

    @abstractmethod
    def batch_update_status(
        self,
        event_id: str,
        user_ids: Iterable[str],
        new_status: EntrantStatus,
        *,
        expected_status: Optional[EntrantStatus] = None,
    ) -> int:
        """Set the status of every listed entrant, all or nothing.

        Returns the number of entrants updated.
        """

    @abstractmethod
    def delete(
        self,
        event_id: str,
        user_id: str,
        *,
        expected_status: Optional[EntrantStatus] = None,
    ) -> bool:
        """Delete one entrant. Returns ``False`` when there was nothing to delete."""

    @abstractmethod
    def aggregate_counts(self, event_id: str) -> dict[EntrantStatus, int]:
        """Count the event's entrants per status in a single read.

        Every status is present in the result, with zero for empty ones.
        """

    def aggregate_count(self, event_id: str, status: EntrantStatus) -> int:
        return self.aggregate_counts(event_id)[status]


def _check_expected(
    entrant: Entrant,
    expected_status: Optional[EntrantStatus],
    new_status: Optional[EntrantStatus],
) -> None:
    if expected_status is None or entrant.status == expected_status:
        return
    raise InvalidTransition(
        "Entrant status changed concurrently: expected {expected}, found {found}".format(
            expected=expected_status.value,
            found=entrant.status.value,
        ),
        event_id=entrant.event_id,
        user_id=entrant.user_id,
        transition=new_status.value if new_status is not None else "delete",
    )


@contextmanager
def _store_errors(
    operation: str,
    event_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Iterator[None]:
    """Translate driver-level failures into :class:`DataUnavailable`."""

    try:
        yield
    except IntegrityError:
        raise
    except DBAPIError as exc:
        logger.warning(f"Store failure during {operation} for event {event_id}: {exc.orig}")
        raise DataUnavailable(
            f"Could not complete {operation}: the store is unavailable",
            event_id=event_id,
            user_id=user_id,
            transition=operation,
        ) from exc


class SqlAlchemyEntrantRepository(EntrantRepository):
    """:class:`EntrantRepository` backed by a SQLAlchemy :class:`Session`."""

    def __init__(self, session: Session) -> None:
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with _store_errors("transaction"):
            with transaction_scope(self._session):
                yield

    def get_event(self, event_id: str, *, for_update: bool = False) -> Optional[Event]:
        stmt = (
            select(Event)
            .where(Event.id == event_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        with _store_errors("get_event", event_id):
            return self._session.scalar(stmt)

    def get(self, event_id: str, user_id: str) -> Optional[Entrant]:
        stmt = (
            select(Entrant)
            .where(Entrant.event_id == event_id, Entrant.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        with _store_errors("get", event_id, user_id):
            return self._session.scalar(stmt)

    def _by_status_stmt(self, event_id: str, status: EntrantStatus):
        return (
            select(Entrant)
            .where(Entrant.event_id == event_id, Entrant.status == status)
            .order_by(Entrant.date_registered.asc(), Entrant.user_id.asc())
        )

    def list_by_status(self, event_id: str, status: EntrantStatus) -> list[Entrant]:
        stmt = self._by_status_stmt(event_id, status).execution_options(
            populate_existing=True
        )
        with _store_errors("list_by_status", event_id):
            return list(self._session.scalars(stmt).all())

    def iter_by_status(
        self, event_id: str, status: EntrantStatus, *, page_size: int = 500
    ) -> Iterator[Entrant]:
        stmt = self._by_status_stmt(event_id, status).execution_options(
            yield_per=page_size
        )
        with _store_errors("iter_by_status", event_id):
            yield from self._session.scalars(stmt)

    def list_for_user(self, user_id: str) -> list[Entrant]:
        stmt = (
            select(Entrant)
            .where(Entrant.user_id == user_id)
            .options(joinedload(Entrant.event))
            .order_by(Entrant.date_registered.desc(), Entrant.event_id.asc())
        )
        with _store_errors("list_for_user", user_id=user_id):
            return list(self._session.scalars(stmt).all())

    def put(self, entrant: Entrant) -> Entrant:
        if self.get(entrant.event_id, entrant.user_id) is not None:
            raise DuplicateEntrant(
                "User has already joined this event",
                event_id=entrant.event_id,
                user_id=entrant.user_id,
                transition="join",
            )
        try:
            with _store_errors("put", entrant.event_id, entrant.user_id):
                with self._session.begin_nested():
                    self._session.add(entrant)
        except IntegrityError as exc:
            # Lost a race against a concurrent join for the same user.
            raise DuplicateEntrant(
                "User has already joined this event",
                event_id=entrant.event_id,
                user_id=entrant.user_id,
                transition="join",
            ) from exc
        logger.debug(f"Stored entrant {entrant.user_id} for event {entrant.event_id}")
        return entrant

    def _locked_entrants(self, event_id: str, user_ids: list[str]) -> list[Entrant]:
        stmt = (
            select(Entrant)
            .where(Entrant.event_id == event_id, Entrant.user_id.in_(user_ids))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(self._session.scalars(stmt).all())

    def update_status(
        self,
        event_id: str,
        user_id: str,
        new_status: EntrantStatus,
        *,
        expected_status: Optional[EntrantStatus] = None,
    ) -> Entrant:
        with _store_errors("update_status", event_id, user_id):
            with self._session.begin_nested():
                rows = self._locked_entrants(event_id, [user_id])
                if not rows:
                    raise NotFound(
                        "Entrant not found",
                        event_id=event_id,
                        user_id=user_id,
                        transition=new_status.value,
                    )
                entrant = rows[0]
                _check_expected(entrant, expected_status, new_status)
                entrant.status = new_status
                entrant.updated_at = utcnow()
        return entrant

    def batch_update_status(
        self,
        event_id: str,
        user_ids: Iterable[str],
        new_status: EntrantStatus,
        *,
        expected_status: Optional[EntrantStatus] = None,
    ) -> int:
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return 0
        with _store_errors("batch_update_status", event_id):
            # The SAVEPOINT makes the batch atomic even when the caller keeps
            # its outer transaction going after a failure.
            with self._session.begin_nested():
                rows = self._locked_entrants(event_id, ids)
                found = {row.user_id for row in rows}
                missing = [uid for uid in ids if uid not in found]
                if missing:
                    raise NotFound(
                        f"{len(missing)} entrant(s) no longer exist",
                        event_id=event_id,
                        user_id=missing[0],
                        transition=new_status.value,
                    )
                for row in rows:
                    _check_expected(row, expected_status, new_status)
                now = utcnow()
                for row in rows:
                    row.status = new_status
                    row.updated_at = now
        logger.debug(
            f"Batch-updated {len(ids)} entrant(s) of event {event_id} to {new_status.value}"
        )
        return len(ids)

    def delete(
        self,
        event_id: str,
        user_id: str,
        *,
        expected_status: Optional[EntrantStatus] = None,
    ) -> bool:
        with _store_errors("delete", event_id, user_id):
            with self._session.begin_nested():
                rows = self._locked_entrants(event_id, [user_id])
                if not rows:
                    return False
                _check_expected(rows[0], expected_status, None)
                self._session.delete(rows[0])
        return True

    def aggregate_counts(self, event_id: str) -> dict[EntrantStatus, int]:
        stmt = (
            select(Entrant.status, func.count())
            .where(Entrant.event_id == event_id)
            .group_by(Entrant.status)
        )
        with _store_errors("aggregate_counts", event_id):
            rows = self._session.execute(stmt).all()
        counts = {status: 0 for status in EntrantStatus}
        for status, count in rows:
            counts[EntrantStatus(status)] = int(count)
        return counts


__all__ = ["EntrantRepository", "SqlAlchemyEntrantRepository"]
