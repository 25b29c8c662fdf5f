"""Notification sink implementations."""

import logging
from typing import List, Sequence

from trade_agent.notifications.base import Notification, NotificationSink, NotificationType
from trade_agent.utils.logging import get_logger, log_with_context

logger = get_logger(__name__)

LEVELS = {
    NotificationType.SUCCESS: "info",
    NotificationType.INFO: "info",
    NotificationType.WARNING: "warning",
    NotificationType.ERROR: "error",
}


class LoggingSink(NotificationSink):
    """Writes notifications to a logger."""

    def __init__(self, target: logging.Logger = None):
        self.target = target or get_logger("trade_agent.notifications")

    async def notify(self, notification: Notification) -> None:
        log_with_context(
            self.target,
            LEVELS[notification.type],
            f"{notification.title}: {notification.message}",
            wallet=notification.wallet,
            link=notification.link.url if notification.link else None,
        )


class CollectingSink(NotificationSink):
    """Keeps notifications in memory (CLI summaries, tests)."""

    def __init__(self):
        self.notifications: List[Notification] = []

    async def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)

    def of_type(self, notification_type: NotificationType) -> List[Notification]:
        return [n for n in self.notifications if n.type == notification_type]

    def clear(self) -> None:
        self.notifications.clear()


class FanOutSink(NotificationSink):
    """Delivers to several sinks; one failing sink does not stop the others."""

    def __init__(self, sinks: Sequence[NotificationSink]):
        self.sinks = list(sinks)

    async def notify(self, notification: Notification) -> None:
        for sink in self.sinks:
            try:
                await sink.notify(notification)
            except Exception as e:
                logger.warning(
                    "Notification sink %s failed for '%s': %s",
                    type(sink).__name__,
                    notification.title,
                    e,
                )
