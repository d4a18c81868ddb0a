"""DeliveryContext: carries the cancellation signal and deadline through a send."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from dataclasses import dataclass, field

CANCELED = "context canceled"
DEADLINE_EXCEEDED = "context deadline exceeded"


def _wake(waiter: asyncio.Future[None]) -> None:
    if not waiter.done():
        waiter.set_result(None)


@dataclass
class DeliveryContext:
    """Cancellation and deadline shared by every layer of one notify call.

    A context is not tied to an event loop: each ``wait()`` parks a future on
    the loop it runs in, and ``cancel()`` wakes every one of them, so the
    same context can be reused across ``asyncio.run`` calls or cancelled from
    another thread.

    Attributes:
        deadline: Absolute time (on ``clock``) after which the context is done.
            ``None`` means no deadline.
        clock: Monotonic time source used for the deadline.
    """

    deadline: float | None = None
    clock: Callable[[], float] = time.monotonic
    _reason: str | None = field(default=None, init=False, repr=False)
    _waiters: set[asyncio.Future[None]] = field(default_factory=set, init=False, repr=False)

    @classmethod
    def background(cls) -> DeliveryContext:
        """A context that is never cancelled and has no deadline."""
        return cls()

    @classmethod
    def with_timeout(
        cls, seconds: float, *, clock: Callable[[], float] = time.monotonic
    ) -> DeliveryContext:
        """A context whose deadline is *seconds* from now."""
        return cls(deadline=clock() + seconds, clock=clock)

    def cancel(self, reason: str = CANCELED) -> None:
        """Cancel the context. Calling it again keeps the first reason."""
        if self._reason is None:
            self._reason = reason
        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.get_loop().call_soon_threadsafe(_wake, waiter)

    def remaining(self) -> float | None:
        """Seconds left before the deadline, or None when unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self.clock())

    @property
    def cancelled(self) -> bool:
        return self.error is not None

    @property
    def error(self) -> str | None:
        """Why the context is done, or None while it is still live."""
        if self._reason is not None:
            return self._reason
        if self.deadline is not None and self.clock() >= self.deadline:
            return DEADLINE_EXCEEDED
        return None

    async def wait(self) -> None:
        """Block until the context is cancelled or its deadline passes."""
        while not self.cancelled:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.add(waiter)
            # cancel() may have run on another thread since the loop check
            if self._reason is not None:
                _wake(waiter)
            try:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(waiter, timeout=self.remaining())
            finally:
                self._waiters.discard(waiter)
