"""Dispatcher: fans one message out to every configured channel."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from webnotifications import chatbot_channel, email_channel
from webnotifications.chatbot_channel import ChatBotSender
from webnotifications.context import DeliveryContext
from webnotifications.email_channel import EmailSender
from webnotifications.errors import AggregateError, NotificationError
from webnotifications.models import ChannelKind, Notifier, NotifierConfig
from webnotifications.ratelimit import RateLimiter

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)


class Dispatcher:
    """Delivers a message through an ordered list of senders.

    Every sender is attempted, in order, even after a failure. Failures are
    collected and raised together as an AggregateError.
    """

    def __init__(
        self,
        senders: Iterable[Notifier],
        *,
        config: NotifierConfig | None = None,
        limiter: RateLimiter | None = None,
    ) -> None:
        self._senders: tuple[Notifier, ...] = tuple(senders)
        self._config = config
        self._limiter = limiter

    @classmethod
    def build(
        cls,
        config: NotifierConfig,
        *kinds: ChannelKind,
        limiter: RateLimiter | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> Dispatcher:
        """Build a dispatcher with one sender per requested, fully configured kind.

        Kinds whose configuration is incomplete are skipped without error.
        Unless *limiter* is given, the dispatcher gets its own RateLimiter.
        """
        if limiter is None:
            limiter = RateLimiter()
        senders: list[Notifier] = []
        for kind in map(ChannelKind, kinds):
            if kind is ChannelKind.CHAT_BOT and chatbot_channel.is_valid_config(config):
                senders.append(ChatBotSender.from_config(config, limiter, client=client))
            elif kind is ChannelKind.EMAIL and email_channel.is_valid_config(config):
                senders.append(EmailSender.from_config(config))
            else:
                logger.debug("Skipping %s channel: configuration incomplete", kind.value)
        return cls(senders, config=config, limiter=limiter)

    @property
    def senders(self) -> tuple[Notifier, ...]:
        return self._senders

    @property
    def channel_names(self) -> list[str]:
        """Names of the configured channels, in dispatch order."""
        return [s.name for s in self._senders]

    @property
    def config(self) -> NotifierConfig | None:
        return self._config

    @property
    def limiter(self) -> RateLimiter | None:
        return self._limiter

    async def notify(self, message: str) -> None:
        """Send *message* with no deadline."""
        await self.notify_with_context(DeliveryContext.background(), message)

    async def notify_with_context(self, ctx: DeliveryContext, message: str) -> None:
        """Send *message* through every channel, sharing *ctx* between them."""
        errors: list[NotificationError] = []
        for sender in self._senders:
            try:
                await sender.notify(ctx, message)
            except NotificationError as exc:
                logger.warning("Notification via %s failed: %s", sender.name, exc)
                errors.append(exc)
        if errors:
            raise AggregateError(errors)


def build_dispatcher(
    config: NotifierConfig,
    *kinds: ChannelKind,
    limiter: RateLimiter | None = None,
    client: httpx.AsyncClient | None = None,
) -> Dispatcher:
    """Shorthand for :meth:`Dispatcher.build`."""
    return Dispatcher.build(config, *kinds, limiter=limiter, client=client)
