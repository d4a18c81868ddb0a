"""Fan-out notification dispatcher for chat-bot and email channels."""

from webnotifications.chatbot_channel import ChatBotSender
from webnotifications.context import DeliveryContext
from webnotifications.dispatcher import Dispatcher, build_dispatcher
from webnotifications.email_channel import EmailSender
from webnotifications.errors import (
    AggregateError,
    DeliveryFailed,
    NotificationError,
    RateLimitCancelled,
    SendCancelled,
)
from webnotifications.models import ChannelKind, Notifier, NotifierConfig
from webnotifications.ratelimit import RateLimiter, TokenBucket

__all__ = [
    "AggregateError",
    "ChannelKind",
    "ChatBotSender",
    "DeliveryContext",
    "DeliveryFailed",
    "Dispatcher",
    "EmailSender",
    "NotificationError",
    "Notifier",
    "NotifierConfig",
    "RateLimitCancelled",
    "RateLimiter",
    "SendCancelled",
    "TokenBucket",
    "build_dispatcher",
]
