from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .event import Event, EventStatus  # noqa: F401
from .entrant import COMMITTED_STATUSES, Entrant, EntrantStatus  # noqa: F401
from .notification import Notification, NotificationType  # noqa: F401

__all__ = [
    "Base",
    "Event",
    "EventStatus",
    "Entrant",
    "EntrantStatus",
    "COMMITTED_STATUSES",
    "Notification",
    "NotificationType",
]
