"""Member notification feed."""

from .manager import NotificationManager
from .models import Notification
from .schemas import NotificationKind, NotificationResponse

__all__ = [
    "NotificationManager",
    "Notification",
    "NotificationKind",
    "NotificationResponse",
]
