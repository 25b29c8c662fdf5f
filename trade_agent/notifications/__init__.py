"""Notifications - User-facing session events.

Components:
- NotificationSink: Abstract delivery interface
- LoggingSink / CollectingSink / FanOutSink: Implementations
"""

from trade_agent.notifications.base import (
    Notification,
    NotificationLink,
    NotificationSink,
    NotificationType,
)
from trade_agent.notifications.sinks import CollectingSink, FanOutSink, LoggingSink

__all__ = [
    "NotificationSink",
    "LoggingSink",
    "CollectingSink",
    "FanOutSink",
    "Notification",
    "NotificationLink",
    "NotificationType",
]
