"""Chat-bot (Telegram Bot API) implementation of the Notifier protocol."""

from __future__ import annotations

import logging
import re

import httpx

from webnotifications.context import DeliveryContext
from webnotifications.errors import DeliveryFailed
from webnotifications.models import NotifierConfig
from webnotifications.ratelimit import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_API_HOST = "api.telegram.org"

_TOKEN_IN_PATH = re.compile(r"/bot[^/\s]+/")


class BotTokenFilter(logging.Filter):
    """Masks ``/bot<token>/`` in log records, e.g. httpx's request lines."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _TOKEN_IN_PATH.sub("/bot<redacted>/", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


# httpx logs every request URL at INFO, and the token is part of the path.
logging.getLogger("httpx").addFilter(BotTokenFilter())


def is_valid_config(config: NotifierConfig) -> bool:
    """True if *config* carries everything the chat-bot sender needs."""
    return config.has_chat_bot()


class ChatBotSender:
    """Posts messages to one chat through the bot HTTP API.

    Every call takes a token from the global bucket and then one from this
    destination's bucket before issuing exactly one request.
    """

    def __init__(
        self,
        token: str,
        destination_id: str,
        *,
        limiter: RateLimiter,
        api_host: str = DEFAULT_API_HOST,
        client: httpx.AsyncClient | None = None,
        verify_response: bool = False,
        timeout: float = 30.0,
    ) -> None:
        self._token = token
        self._destination_id = destination_id
        self._limiter = limiter
        self._api_host = api_host
        self._client = client
        self._verify_response = verify_response
        self._timeout = timeout

    @classmethod
    def from_config(
        cls,
        config: NotifierConfig,
        limiter: RateLimiter,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> ChatBotSender:
        return cls(
            config.bot_token,
            config.destination_id,
            limiter=limiter,
            api_host=config.bot_api_host,
            client=client,
            verify_response=config.bot_verify_response,
            timeout=config.bot_timeout,
        )

    @property
    def name(self) -> str:
        return "chat_bot"

    @property
    def destination_id(self) -> str:
        return self._destination_id

    @property
    def url(self) -> str:
        return f"https://{self._api_host}/bot{self._token}/sendMessage"

    async def notify(self, ctx: DeliveryContext, message: str) -> None:
        """Send *message* to the configured chat."""
        await self._limiter.acquire(None, ctx)
        await self._limiter.acquire(self._destination_id, ctx)

        data = {"chat_id": self._destination_id, "text": message}
        try:
            if self._client is not None:
                resp = await self._client.post(self.url, data=data)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(self.url, data=data)
        except httpx.HTTPError as exc:
            # httpx puts the URL (and so the token) in some messages
            logger.warning(
                "Chat-bot send to %s failed: %s", self._destination_id, type(exc).__name__
            )
            msg = f"request failed: {type(exc).__name__}"
            raise DeliveryFailed(self.name, msg) from exc

        self._check_response(resp)
        logger.info("Chat-bot message sent to %s (%d chars)", self._destination_id, len(message))

    def _check_response(self, resp: httpx.Response) -> None:
        if resp.is_success and not self._verify_response:
            return
        if not resp.is_success:
            logger.warning(
                "Chat-bot API returned status=%d for %s: %s",
                resp.status_code,
                self._destination_id,
                resp.text[:200],
            )
            if self._verify_response:
                msg = f"API returned {resp.status_code}: {resp.text[:200]}"
                raise DeliveryFailed(self.name, msg)
            return
        try:
            body = resp.json()
        except ValueError:
            msg = f"API returned a non-JSON body: {resp.text[:200]}"
            raise DeliveryFailed(self.name, msg) from None
        if isinstance(body, dict) and body.get("ok") is False:
            msg = f"API rejected the message: {body.get('description', 'unknown error')}"
            raise DeliveryFailed(self.name, msg)
