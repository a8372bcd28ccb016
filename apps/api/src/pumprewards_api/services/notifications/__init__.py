"""Notification service package."""

from .backend import (
    AccountNotification,
    InMemoryNotificationDispatcher,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
)
from .service import notify_best_effort

__all__ = [
    "AccountNotification",
    "InMemoryNotificationDispatcher",
    "LoggingNotificationDispatcher",
    "NotificationDispatcher",
    "notify_best_effort",
]
