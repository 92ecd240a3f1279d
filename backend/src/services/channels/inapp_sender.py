"""
In-app channel sender.

In-app notifications are delivered by being stored: the notification list
endpoint is the delivery surface, so a send always succeeds.
"""

from backend.src.models.notification import Notification, NotificationChannel
from backend.src.services.channels.base import ChannelSender, SendResult


class InAppChannelSender(ChannelSender):
    """Sender for the in-app channel."""

    channel = NotificationChannel.INAPP

    async def send(self, notification: Notification) -> SendResult:
        return SendResult.ok()
