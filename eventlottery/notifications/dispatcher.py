"""Fire-and-forget hand-off of composed messages to a sink."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .messages import NotificationMessage
from .sinks import NotificationSink, NullNotificationSink
from ..errors import NotificationDeliveryFailed

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Deliver messages through ``sink`` without ever failing the caller.

    Delivery failures are logged as :class:`NotificationDeliveryFailed` and
    reported back as data. Callers dispatch only after the transition that
    produced the message has committed; deduplication is theirs too.
    """

    def __init__(self, sink: Optional[NotificationSink] = None) -> None:
        self.sink = sink or NullNotificationSink()

    def dispatch(self, message: NotificationMessage) -> bool:
        """Send one message. Returns ``False`` when delivery failed."""

        try:
            self.sink.send(message)
        except Exception as exc:
            failure = NotificationDeliveryFailed(
                f"Could not deliver {message.type.value} notification: {exc}",
                event_id=message.event_id,
                user_id=message.recipient_id,
                transition=message.type.value,
            )
            logger.warning(f"{failure.message} (event {failure.event_id}, user {failure.user_id})")
            return False
        logger.debug(
            f"Dispatched {message.type.value} notification to {message.recipient_id}"
        )
        return True

    def dispatch_all(self, messages: Iterable[NotificationMessage]) -> list[str]:
        """Send every message and return the recipient ids whose delivery failed."""

        return [m.recipient_id for m in messages if not self.dispatch(m)]


__all__ = ["NotificationDispatcher"]
