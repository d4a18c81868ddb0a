"""Channel kinds, the notifier configuration record and the Notifier protocol."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from webnotifications.context import DeliveryContext


class ChannelKind(str, Enum):
    """Which sender implementation to build."""

    CHAT_BOT = "chat_bot"
    EMAIL = "email"


class NotifierConfig(BaseModel):
    """Credentials and addresses for every supported channel.

    Created once by the embedding application and never mutated. A channel
    whose fields are incomplete is simply not built.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Chat bot
    bot_token: str = Field(default="")
    destination_id: str = Field(default="")
    bot_api_host: str = Field(default="api.telegram.org")
    bot_verify_response: bool = Field(default=False)
    bot_timeout: float = Field(default=30.0)

    # Email
    smtp_host: str = Field(default="")
    smtp_port: int = Field(default=0)
    smtp_username: str = Field(default="")
    smtp_password: str = Field(default="")
    from_email: str = Field(default="")
    to_email: str = Field(default="")
    smtp_timeout: float = Field(default=60.0)

    def has_chat_bot(self) -> bool:
        """True if the bot token and destination are both set."""
        return bool(self.bot_token and self.destination_id)

    def has_email(self) -> bool:
        """True if every SMTP field is set and the port is positive."""
        return bool(
            self.smtp_host
            and self.smtp_port > 0
            and self.smtp_username
            and self.smtp_password
            and self.from_email
            and self.to_email
        )


@runtime_checkable
class Notifier(Protocol):
    """Protocol that every channel sender must satisfy."""

    @property
    def name(self) -> str:
        """Channel identifier used in logs and error messages."""
        ...

    async def notify(self, ctx: DeliveryContext, message: str) -> None:
        """Deliver *message*. Raises a NotificationError on failure."""
        ...
