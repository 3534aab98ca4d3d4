"""Exception taxonomy for entrant lifecycle and draw operations."""

from __future__ import annotations

from typing import Optional


class LotteryError(Exception):
    """Base class for every error raised by the lottery core.

    Attributes
    ----------
    event_id : Optional[str]
        Event the failed operation targeted.
    user_id : Optional[str]
        Entrant the failed operation targeted, when it concerned one.
    transition : Optional[str]
        Name of the attempted transition or operation (``"accept"``,
        ``"draw"``, ...).
    """

    def __init__(
        self,
        message: str,
        *,
        event_id: Optional[str] = None,
        user_id: Optional[str] = None,
        transition: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.event_id = event_id
        self.user_id = user_id
        self.transition = transition

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "{cls}({msg!r}, event_id={event_id!r}, user_id={user_id!r}, transition={transition!r})".format(
            cls=type(self).__name__,
            msg=self.message,
            event_id=self.event_id,
            user_id=self.user_id,
            transition=self.transition,
        )


class InvalidRequest(LotteryError, ValueError):
    """Malformed input. Never worth retrying as-is."""


class NotFound(LotteryError, LookupError):
    """The event or entrant does not exist."""


class InvalidTransition(LotteryError):
    """The requested status change is not allowed from the current state."""


class DuplicateEntrant(InvalidTransition):
    """The user already holds an entrant record for the event."""


class RegistrationClosed(InvalidTransition):
    """The event does not accept new entrants right now."""


class CapacityExceeded(LotteryError):
    """The write would push committed entrants (or the waiting list) over its limit."""


class EmptyWaitlist(LotteryError):
    """A draw found nobody waiting. Nothing was changed."""


class DataUnavailable(LotteryError):
    """The backing store could not be read or written.

    The operation had no effect; retrying is up to the caller.
    """


class NotificationDeliveryFailed(LotteryError):
    """A composed message could not be handed to its sink.

    Only ever logged and reported; the state transition that produced the
    message stays committed.
    """


__all__ = [
    "LotteryError",
    "InvalidRequest",
    "NotFound",
    "InvalidTransition",
    "DuplicateEntrant",
    "RegistrationClosed",
    "CapacityExceeded",
    "EmptyWaitlist",
    "DataUnavailable",
    "NotificationDeliveryFailed",
]
