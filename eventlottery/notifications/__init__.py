from .dispatcher import NotificationDispatcher
from .messages import (
    NotificationMessage,
    compose_custom,
    compose_invite,
    compose_withdrawal,
)
from .sinks import (
    FanoutNotificationSink,
    InboxNotificationSink,
    NotificationSink,
    NullNotificationSink,
    PushNotificationSink,
)

__all__ = [
    "NotificationDispatcher",
    "NotificationMessage",
    "compose_custom",
    "compose_invite",
    "compose_withdrawal",
    "NotificationSink",
    "NullNotificationSink",
    "InboxNotificationSink",
    "PushNotificationSink",
    "FanoutNotificationSink",
]
