"""Exception taxonomy for notification delivery."""

from __future__ import annotations

from collections.abc import Sequence


class NotificationError(Exception):
    """Base class for every per-channel delivery failure."""

    def __init__(self, channel: str, message: str) -> None:
        super().__init__(f"{channel}: {message}")
        self.channel = channel


class RateLimitCancelled(NotificationError):
    """The context finished before a rate-limit token became available."""

    def __init__(self, channel: str, scope: str, reason: str) -> None:
        super().__init__(channel, f"{scope} rate limiter error: {reason}")
        self.scope = scope
        self.reason = reason


class DeliveryFailed(NotificationError):
    """The provider could not be reached or rejected the request."""


class SendCancelled(NotificationError):
    """The context finished while a send was still in flight."""

    def __init__(self, channel: str, reason: str) -> None:
        super().__init__(channel, f"sending canceled: {reason}")
        self.reason = reason


class AggregateError(Exception):
    """One or more channels failed. ``errors`` keeps the channel order."""

    def __init__(self, errors: Sequence[NotificationError]) -> None:
        self.errors = list(errors)
        joined = "; ".join(str(e) for e in self.errors)
        super().__init__(f"notification errors: [{joined}]")

    @property
    def channels(self) -> list[str]:
        """Names of the failed channels, in dispatch order."""
        return [e.channel for e in self.errors]
