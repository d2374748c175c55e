"""Ticket event notifications."""

from .dispatcher import NotificationDispatcher
from .events import NotificationEvent
from .notifiers import InAppNotifier, LoggingNotifier, Notifier
from .repository import NotificationRecord, NotificationRepository

__all__ = [
    "InAppNotifier",
    "LoggingNotifier",
    "NotificationDispatcher",
    "NotificationEvent",
    "NotificationRecord",
    "NotificationRepository",
    "Notifier",
]
