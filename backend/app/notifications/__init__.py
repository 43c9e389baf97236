"""Notification composition, queueing and delivery."""

from app.notifications.composer import ComposedMessage, NotificationComposer
from app.notifications.dispatcher import NotificationDispatcher
from app.notifications.inbox import InboxPage, NotificationInbox
from app.notifications.message import DeliveryResult, Notification
from app.notifications.queue import ChannelSender, NotificationQueue
from app.notifications.senders import (
    ChannelRouter,
    EmailSender,
    HttpGatewaySender,
    InAppSender,
    build_channel_router,
)

__all__ = [
    "ChannelRouter",
    "ChannelSender",
    "ComposedMessage",
    "DeliveryResult",
    "EmailSender",
    "HttpGatewaySender",
    "InAppSender",
    "InboxPage",
    "Notification",
    "NotificationComposer",
    "NotificationDispatcher",
    "NotificationInbox",
    "NotificationQueue",
    "build_channel_router",
]
