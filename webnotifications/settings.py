"""Environment-driven settings for running the dispatcher from a script.

The library itself never reads the environment; this module is for the
entry points that want ``WEBNOTIFY_*`` variables or a ``.env`` file.
"""

import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from webnotifications.models import ChannelKind, NotifierConfig


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """webnotifications configuration. All values come from environment variables."""

    # Channels to build, in dispatch order
    channels: str = Field(default="chat_bot,email")

    # Seconds before a send is abandoned; 0 means no deadline
    timeout: float = Field(default=0.0)

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

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_prefix="WEBNOTIFY_",
        env_file=_env_file(),
        env_file_encoding="utf-8",
        extra="forbid",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_channel_kinds(self) -> list[ChannelKind]:
        """Parse CHANNELS into channel kinds. Raises ValueError on unknown names."""
        if not self.channels.strip():
            return []
        return [ChannelKind(name.strip()) for name in self.channels.split(",") if name.strip()]

    def to_notifier_config(self) -> NotifierConfig:
        """The channel fields as an immutable NotifierConfig."""
        return NotifierConfig(**self.model_dump(include=set(NotifierConfig.model_fields)))
