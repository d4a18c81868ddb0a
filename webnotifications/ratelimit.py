"""Token-bucket rate limiting for the chat-bot channel.

Two tiers: one global bucket shared by every destination, plus one bucket
per destination id. Buckets start full and refill continuously. Waiting
for a token suspends the caller and is abandoned as soon as the delivery
context is cancelled or its deadline passes.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable

from webnotifications.context import CANCELED, DeliveryContext
from webnotifications.errors import RateLimitCancelled

logger = logging.getLogger(__name__)

# Provider-wide ceiling: 25 messages per second, bursting to 25.
GLOBAL_CAPACITY = 25
GLOBAL_RATE = 25.0

# Per-destination ceiling: one message per second, no burst.
DESTINATION_CAPACITY = 1
DESTINATION_RATE = 1.0

DEFAULT_MAX_DESTINATIONS = 10_000
DEFAULT_IDLE_TTL_SECONDS = 600.0

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class TokenBucket:
    """Single token bucket with continuous refill."""

    def __init__(
        self,
        capacity: int,
        rate: float,
        *,
        scope: str = "global",
        channel: str = "chat_bot",
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if capacity < 1:
            msg = f"capacity must be at least 1, got {capacity}"
            raise ValueError(msg)
        if rate <= 0:
            msg = f"rate must be positive, got {rate}"
            raise ValueError(msg)
        self.capacity = capacity
        self.rate = float(rate)
        self.scope = scope
        self.channel = channel
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._last = clock()
        self._lock = threading.Lock()

    @property
    def tokens(self) -> float:
        """Tokens available right now (negative while callers are queued)."""
        with self._lock:
            self._advance(self._clock())
            return self._tokens

    def _advance(self, now: float) -> None:
        # Caller holds the lock.
        if now > self._last:
            elapsed = now - self._last
            self._tokens = min(float(self.capacity), self._tokens + elapsed * self.rate)
            self._last = now

    def reserve(self, max_wait: float | None = None) -> float | None:
        """Take one token and return how long the caller must wait for it.

        Returns None, leaving the bucket untouched, when the wait would be
        longer than *max_wait*.
        """
        with self._lock:
            self._advance(self._clock())
            tokens = self._tokens - 1.0
            wait = 0.0 if tokens >= 0 else -tokens / self.rate
            if max_wait is not None and wait > max_wait:
                return None
            self._tokens = tokens
            return wait

    def release(self) -> None:
        """Give back a token whose wait was abandoned."""
        with self._lock:
            self._advance(self._clock())
            self._tokens = min(float(self.capacity), self._tokens + 1.0)

    def idle_for(self, now: float) -> float:
        """Seconds the bucket has been completely full as of *now*."""
        with self._lock:
            full_at = self._last + (self.capacity - self._tokens) / self.rate
        return max(0.0, now - full_at)

    def _cancelled(self, reason: str) -> RateLimitCancelled:
        return RateLimitCancelled(self.channel, self.scope, reason)

    async def acquire(self, ctx: DeliveryContext) -> None:
        """Wait for a token, or raise RateLimitCancelled if *ctx* finishes first."""
        if ctx.cancelled:
            raise self._cancelled(ctx.error or CANCELED)

        wait = self.reserve(ctx.remaining())
        if wait is None:
            raise self._cancelled("would exceed context deadline")
        if wait <= 0:
            return

        logger.debug("Rate limiter [%s]: waiting %.3fs for a token", self.scope, wait)
        sleeper = asyncio.ensure_future(self._sleep(wait))
        watcher = asyncio.ensure_future(ctx.wait())
        try:
            done, _ = await asyncio.wait(
                {sleeper, watcher}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            pending = [t for t in (sleeper, watcher) if not t.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if sleeper not in done:
            self.release()
            raise self._cancelled(ctx.error or CANCELED)


class RateLimiter:
    """Global plus per-destination token buckets for one dispatcher.

    Destination buckets are created on first use. Buckets that have sat full
    for ``idle_ttl`` seconds are dropped, since a fresh bucket would start in
    the same state. Past ``max_destinations`` the least recently used
    buckets are dropped too.
    """

    def __init__(
        self,
        *,
        global_capacity: int = GLOBAL_CAPACITY,
        global_rate: float = GLOBAL_RATE,
        destination_capacity: int = DESTINATION_CAPACITY,
        destination_rate: float = DESTINATION_RATE,
        max_destinations: int = DEFAULT_MAX_DESTINATIONS,
        idle_ttl: float = DEFAULT_IDLE_TTL_SECONDS,
        channel: str = "chat_bot",
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_destinations < 1:
            msg = f"max_destinations must be at least 1, got {max_destinations}"
            raise ValueError(msg)
        self._destination_capacity = destination_capacity
        self._destination_rate = destination_rate
        self._max_destinations = max_destinations
        self._idle_ttl = idle_ttl
        self._channel = channel
        self._clock = clock
        self._sleep = sleep
        self._global = TokenBucket(
            global_capacity,
            global_rate,
            scope="global",
            channel=channel,
            clock=clock,
            sleep=sleep,
        )
        self._destinations: OrderedDict[str, TokenBucket] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def global_bucket(self) -> TokenBucket:
        return self._global

    @property
    def destination_count(self) -> int:
        """Number of per-destination buckets currently held."""
        with self._lock:
            return len(self._destinations)

    def bucket_for(self, scope: str | None) -> TokenBucket:
        """Return the bucket for *scope*; None selects the global bucket."""
        if scope is None:
            return self._global
        with self._lock:
            bucket = self._destinations.get(scope)
            if bucket is not None:
                self._destinations.move_to_end(scope)
                return bucket
            self._evict(self._clock())
            bucket = TokenBucket(
                self._destination_capacity,
                self._destination_rate,
                scope=f"destination {scope}",
                channel=self._channel,
                clock=self._clock,
                sleep=self._sleep,
            )
            self._destinations[scope] = bucket
            return bucket

    def _evict(self, now: float) -> None:
        # Caller holds the lock.
        idle = [
            key
            for key, bucket in self._destinations.items()
            if bucket.idle_for(now) >= self._idle_ttl
        ]
        for key in idle:
            del self._destinations[key]
        dropped = 0
        while len(self._destinations) >= self._max_destinations:
            self._destinations.popitem(last=False)
            dropped += 1
        if idle or dropped:
            logger.debug(
                "Rate limiter: evicted %d idle and %d least-recent destination buckets",
                len(idle),
                dropped,
            )

    async def acquire(self, scope: str | None, ctx: DeliveryContext) -> None:
        """Take one token from *scope*, waiting as long as *ctx* allows."""
        await self.bucket_for(scope).acquire(ctx)
