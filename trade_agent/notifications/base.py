"""Notification model and sink interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class NotificationType(Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"
    WARNING = "warning"


@dataclass(frozen=True)
class NotificationLink:
    url: str
    label: str = "View transaction"


@dataclass(frozen=True)
class Notification:
    """A user-facing event.

    Attributes:
        type: Severity / kind
        title: Short headline
        message: Body text
        link: Optional link (explorer URL for transactions)
        wallet: Wallet the event concerns
        timestamp: When the event was created
    """

    type: NotificationType
    title: str
    message: str
    link: Optional[NotificationLink] = None
    wallet: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


class NotificationSink(ABC):
    """Destination for notifications (log, push channel, websocket fan-out)."""

    @abstractmethod
    async def notify(self, notification: Notification) -> None:
        """Deliver a notification.

        Implementations may raise on delivery failure; callers treat
        delivery as best-effort.
        """
        pass
