"""
Channel sender contract.

A ChannelSender delivers one notification over one channel and reports the
outcome as a SendResult. Senders may also raise; the delivery worker treats
an exception exactly like a failed SendResult.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from backend.src.models.notification import Notification, NotificationChannel


@dataclass(frozen=True)
class SendResult:
    """Outcome of a single send attempt."""

    success: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "SendResult":
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> "SendResult":
        return cls(success=False, error=error)


class ChannelSender(ABC):
    """Delivers a notification over a single channel."""

    #: Channel served by this sender
    channel: NotificationChannel

    @abstractmethod
    async def send(self, notification: Notification) -> SendResult:
        """
        Deliver a notification.

        Args:
            notification: Notification to deliver. May be detached from its
                session; senders must only read already-loaded attributes.

        Returns:
            SendResult describing success or the failure reason
        """
