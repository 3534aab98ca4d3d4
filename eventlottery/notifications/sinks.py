"""Destinations that composed notification messages are handed to."""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Sequence
from urllib.parse import urljoin

import requests
from dotenv import load_dotenv
from sqlalchemy.orm import Session

from .messages import NotificationMessage
from ..db.utils import transaction_scope
from ..models import Notification

logger = logging.getLogger(__name__)


class NotificationSink(ABC):
    """Anything that accepts a :class:`NotificationMessage` for delivery."""

    @abstractmethod
    def send(self, message: NotificationMessage) -> None:
        """Hand ``message`` over for delivery; raise on failure."""


class NullNotificationSink(NotificationSink):
    def send(self, message: NotificationMessage) -> None:
        logger.debug(
            f"Dropping {message.type.value} notification for {message.recipient_id}"
        )


class InboxNotificationSink(NotificationSink):
    """Store each message as a :class:`~eventlottery.models.Notification` row.

    The row is written in its own transaction (or SAVEPOINT when the session
    is already inside one), so a failed insert never disturbs the state
    change that produced the message.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def send(self, message: NotificationMessage) -> None:
        with transaction_scope(self._session):
            self._session.add(
                Notification(
                    recipient_id=message.recipient_id,
                    type=message.type,
                    title=message.title,
                    message=message.text,
                    event_id=message.event_id,
                    event_name=message.event_name,
                    sender_id=message.sender_id,
                )
            )


class PushNotificationSink(NotificationSink):
    """POST messages as JSON to an HTTP push gateway.

    Parameters
    ----------
    base_url : Optional[str], default: None
        Gateway base URL. Falls back to ``LOTTERY_PUSH_BASE_URL``.
    api_key : Optional[str], default: None
        Bearer token sent with each request. Falls back to
        ``LOTTERY_PUSH_API_KEY``; omitted from the request when unset.
    timeout : Optional[float], default: None
        Request timeout in seconds. Falls back to ``LOTTERY_PUSH_TIMEOUT``,
        then 10.
    session : Optional[requests.Session], default: None
        HTTP session to reuse. A new one is created when omitted.
    path : str, default: "/api/v1/notifications"
        Endpoint path relative to ``base_url``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        path: str = "/api/v1/notifications",
    ) -> None:
        load_dotenv()
        url = base_url or os.getenv("LOTTERY_PUSH_BASE_URL")
        if not url:
            raise ValueError("Environment variable 'LOTTERY_PUSH_BASE_URL' is not set")

        self.base_url = url.rstrip("/")
        self.path = path
        self._api_key = api_key or os.getenv("LOTTERY_PUSH_API_KEY")
        self.timeout = (
            timeout
            if timeout is not None
            else float(os.getenv("LOTTERY_PUSH_TIMEOUT", "10"))
        )
        self.session = session or requests.Session()

    @property
    def headers(self) -> Mapping[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _post(self, path: str, json: dict) -> Any:
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        r = self.session.request(
            method="POST",
            url=url,
            headers=self.headers,
            json=json,
            timeout=self.timeout,
        )
        r.raise_for_status()
        return r.json() if r.content else None

    def send(self, message: NotificationMessage) -> None:
        self._post(self.path, message.to_json())


class FanoutNotificationSink(NotificationSink):
    """Send every message to each wrapped sink in order.

    Stops at the first sink that raises, so an inbox row can be required
    before a push is attempted.
    """

    def __init__(self, sinks: Sequence[NotificationSink]) -> None:
        self._sinks = list(sinks)

    def send(self, message: NotificationMessage) -> None:
        for sink in self._sinks:
            sink.send(message)


__all__ = [
    "NotificationSink",
    "NullNotificationSink",
    "InboxNotificationSink",
    "PushNotificationSink",
    "FanoutNotificationSink",
]
