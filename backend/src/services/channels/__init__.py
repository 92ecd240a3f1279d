"""
Channel senders for notification delivery.

Adding a channel means adding a NotificationChannel value and registering its
sender in build_channel_senders().
"""

from typing import Dict

from backend.src.config.settings import AppSettings
from backend.src.models.notification import NotificationChannel
from backend.src.services.channels.base import ChannelSender, SendResult
from backend.src.services.channels.email_sender import EmailChannelSender
from backend.src.services.channels.inapp_sender import InAppChannelSender
from backend.src.services.channels.push_sender import PushChannelSender


def build_channel_senders(settings: AppSettings) -> Dict[NotificationChannel, ChannelSender]:
    """
    Build the channel -> sender mapping used by the delivery worker.

    Args:
        settings: Application settings (SMTP configuration)

    Returns:
        Mapping from channel to its sender
    """
    return {
        NotificationChannel.INAPP: InAppChannelSender(),
        NotificationChannel.EMAIL: EmailChannelSender(settings),
        NotificationChannel.PUSH: PushChannelSender(),
    }


__all__ = [
    "ChannelSender",
    "SendResult",
    "InAppChannelSender",
    "EmailChannelSender",
    "PushChannelSender",
    "build_channel_senders",
]
