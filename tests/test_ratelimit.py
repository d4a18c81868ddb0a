"""Tests for the token-bucket rate limiter."""

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from webnotifications.context import DeliveryContext
from webnotifications.errors import RateLimitCancelled
from webnotifications.ratelimit import RateLimiter, TokenBucket

# -- TokenBucket ---------------------------------------------------------------


class TestTokenBucket:
    def test_starts_full(self, clock):
        bucket = TokenBucket(3, 1.0, clock=clock, sleep=clock.sleep)
        assert bucket.tokens == 3.0

    @pytest.mark.parametrize(("capacity", "rate"), [(0, 1.0), (1, 0.0), (1, -2.0)])
    def test_invalid_parameters(self, capacity, rate):
        with pytest.raises(ValueError):
            TokenBucket(capacity, rate)

    def test_refill_is_capped_at_capacity(self, clock):
        bucket = TokenBucket(2, 1.0, clock=clock, sleep=clock.sleep)
        bucket.reserve()
        bucket.reserve()
        clock.advance(100.0)
        assert bucket.tokens == 2.0

    def test_reserve_returns_wait(self, clock):
        bucket = TokenBucket(1, 2.0, clock=clock, sleep=clock.sleep)
        assert bucket.reserve() == 0.0
        assert bucket.reserve() == pytest.approx(0.5)
        assert bucket.reserve() == pytest.approx(1.0)

    def test_reserve_over_max_wait_leaves_bucket_untouched(self, clock):
        bucket = TokenBucket(1, 1.0, clock=clock, sleep=clock.sleep)
        bucket.reserve()
        assert bucket.reserve(max_wait=0.5) is None
        assert bucket.tokens == 0.0

    async def test_acquire_without_wait(self, clock):
        bucket = TokenBucket(2, 1.0, clock=clock, sleep=clock.sleep)
        await bucket.acquire(DeliveryContext.background())
        await bucket.acquire(DeliveryContext.background())
        assert clock.sleeps == []

    async def test_acquire_sleeps_until_refill(self, clock):
        bucket = TokenBucket(1, 1.0, clock=clock, sleep=clock.sleep)
        ctx = DeliveryContext.background()
        await bucket.acquire(ctx)
        await bucket.acquire(ctx)
        assert clock.sleeps == [pytest.approx(1.0)]
        assert clock.now >= 1.0

    async def test_pre_cancelled_context_consumes_nothing(self, clock):
        bucket = TokenBucket(1, 1.0, clock=clock, sleep=clock.sleep)
        ctx = DeliveryContext.background()
        ctx.cancel()
        with pytest.raises(RateLimitCancelled, match="context canceled"):
            await bucket.acquire(ctx)
        assert bucket.tokens == 1.0

    async def test_deadline_shorter_than_wait_fails_fast(self, clock):
        bucket = TokenBucket(1, 1.0, scope="destination 7", clock=clock, sleep=clock.sleep)
        await bucket.acquire(DeliveryContext.background())

        ctx = DeliveryContext.with_timeout(0.5, clock=clock)
        with pytest.raises(RateLimitCancelled) as exc_info:
            await bucket.acquire(ctx)
        assert exc_info.value.scope == "destination 7"
        assert "would exceed context deadline" in str(exc_info.value)
        assert clock.sleeps == []

        # The refused reservation was not kept.
        clock.advance(1.0)
        await bucket.acquire(DeliveryContext.background())
        assert clock.sleeps == []

    async def test_cancel_during_wait(self):
        bucket = TokenBucket(1, 1.0)
        ctx = DeliveryContext.background()
        await bucket.acquire(ctx)

        waiter = asyncio.create_task(bucket.acquire(ctx))
        await asyncio.sleep(0.02)
        assert not waiter.done()

        ctx.cancel()
        with pytest.raises(RateLimitCancelled, match="context canceled"):
            await asyncio.wait_for(waiter, timeout=0.5)

    async def test_cancelled_wait_returns_its_token(self):
        bucket = TokenBucket(1, 1.0)
        ctx = DeliveryContext.background()
        await bucket.acquire(ctx)

        waiter = asyncio.create_task(bucket.acquire(ctx))
        await asyncio.sleep(0.05)
        ctx.cancel()
        with pytest.raises(RateLimitCancelled):
            await asyncio.wait_for(waiter, timeout=0.5)

        # Only the refill since the first acquire is left; the abandoned
        # reservation no longer holds the bucket below zero.
        assert 0.0 <= bucket.tokens < 0.5

    async def test_cancelled_wait_does_not_delay_next_caller(self, clock):
        bucket = TokenBucket(1, 1.0, clock=clock, sleep=clock.sleep)
        await bucket.acquire(DeliveryContext.background())
        assert bucket.reserve() == pytest.approx(1.0)
        bucket.release()

        clock.advance(1.0)
        await bucket.acquire(DeliveryContext.background())
        assert clock.sleeps == []

    def test_release_is_capped_at_capacity(self, clock):
        bucket = TokenBucket(2, 1.0, clock=clock, sleep=clock.sleep)
        bucket.release()
        assert bucket.tokens == 2.0

    async def test_real_clock_waits_for_refill(self):
        bucket = TokenBucket(1, 20.0)
        ctx = DeliveryContext.background()
        loop = asyncio.get_running_loop()
        await bucket.acquire(ctx)
        start = loop.time()
        await bucket.acquire(ctx)
        assert loop.time() - start >= 0.04

    def test_idle_for(self, clock):
        bucket = TokenBucket(1, 1.0, clock=clock, sleep=clock.sleep)
        assert bucket.idle_for(5.0) == 5.0
        bucket.reserve()
        assert bucket.idle_for(0.5) == 0.0
        assert bucket.idle_for(4.0) == pytest.approx(3.0)


# -- RateLimiter ---------------------------------------------------------------


class TestRateLimiter:
    async def test_same_destination_waits_one_second(self, clock):
        limiter = RateLimiter(clock=clock, sleep=clock.sleep)
        ctx = DeliveryContext.background()

        await limiter.acquire(None, ctx)
        await limiter.acquire("chat-1", ctx)
        first = clock.now

        await limiter.acquire(None, ctx)
        await limiter.acquire("chat-1", ctx)
        assert clock.now - first >= 1.0

    async def test_same_destination_deadline_cancels(self, clock):
        limiter = RateLimiter(clock=clock, sleep=clock.sleep)
        await limiter.acquire("chat-1", DeliveryContext.background())

        ctx = DeliveryContext.with_timeout(0.9, clock=clock)
        with pytest.raises(RateLimitCancelled) as exc_info:
            await limiter.acquire("chat-1", ctx)
        assert exc_info.value.scope == "destination chat-1"
        assert exc_info.value.channel == "chat_bot"

    async def test_different_destinations_do_not_wait(self, clock):
        limiter = RateLimiter(clock=clock, sleep=clock.sleep)
        ctx = DeliveryContext.background()
        for dest in ("a", "b", "c"):
            await limiter.acquire(None, ctx)
            await limiter.acquire(dest, ctx)
        assert clock.sleeps == []

    async def test_global_bucket_throttles_26th_send(self, clock):
        limiter = RateLimiter(clock=clock, sleep=clock.sleep)
        ctx = DeliveryContext.background()
        for i in range(26):
            await limiter.acquire(None, ctx)
            await limiter.acquire(f"chat-{i}", ctx)
        assert clock.sleeps == [pytest.approx(1 / 25)]

    def test_global_scope_is_none(self):
        limiter = RateLimiter()
        assert limiter.bucket_for(None) is limiter.global_bucket
        assert limiter.global_bucket.capacity == 25
        assert limiter.global_bucket.rate == 25.0

    def test_destination_bucket_is_reused(self):
        limiter = RateLimiter()
        bucket = limiter.bucket_for("42")
        assert limiter.bucket_for("42") is bucket
        assert bucket.capacity == 1
        assert bucket.rate == 1.0
        assert limiter.destination_count == 1

    def test_concurrent_first_use_creates_one_bucket(self):
        limiter = RateLimiter()
        with ThreadPoolExecutor(max_workers=8) as pool:
            buckets = list(pool.map(lambda _: limiter.bucket_for("shared"), range(64)))
        assert all(b is buckets[0] for b in buckets)
        assert limiter.destination_count == 1

    def test_least_recently_used_evicted_past_cap(self):
        limiter = RateLimiter(max_destinations=2)
        a = limiter.bucket_for("a")
        limiter.bucket_for("b")
        assert limiter.bucket_for("a") is a  # "a" is now most recent
        limiter.bucket_for("c")

        assert limiter.destination_count == 2
        assert limiter.bucket_for("a") is a
        assert limiter.destination_count == 2

    async def test_idle_buckets_evicted(self, clock):
        limiter = RateLimiter(idle_ttl=10.0, clock=clock, sleep=clock.sleep)
        await limiter.acquire("old", DeliveryContext.background())
        clock.advance(5.0)
        limiter.bucket_for("recent")
        assert limiter.destination_count == 2

        clock.advance(20.0)
        limiter.bucket_for("new")
        assert limiter.destination_count == 1

    async def test_busy_bucket_not_evicted_as_idle(self, clock):
        limiter = RateLimiter(idle_ttl=0.5, clock=clock, sleep=clock.sleep)
        ctx = DeliveryContext.background()
        busy = limiter.bucket_for("busy")
        await limiter.acquire("busy", ctx)
        clock.advance(0.6)  # still refilling: full again at t=1.0
        limiter.bucket_for("other")
        assert limiter.bucket_for("busy") is busy

    def test_invalid_max_destinations(self):
        with pytest.raises(ValueError):
            RateLimiter(max_destinations=0)

    def test_limiters_are_independent(self, clock):
        first = RateLimiter(clock=clock, sleep=clock.sleep)
        second = RateLimiter(clock=clock, sleep=clock.sleep)
        first.bucket_for("42").reserve()
        assert second.bucket_for("42").tokens == 1.0
