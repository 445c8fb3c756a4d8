from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol

Sleep = Callable[[float], Awaitable[None]]


class RateLimiter(Protocol):
    name: str

    async def acquire(self) -> None:
        ...


@dataclass
class FixedDelayLimiter:
    """Sleeps a fixed delay before every model call.

    Each caller waits independently, so the effective request rate grows with
    the number of concurrent tasks.
    """

    delay_seconds: float = 2.0
    name: str = "fixed"
    sleep: Sleep = field(default=asyncio.sleep, repr=False)

    async def acquire(self) -> None:
        if self.delay_seconds > 0:
            await self.sleep(self.delay_seconds)


@dataclass
class NoopLimiter:
    name: str = "none"

    async def acquire(self) -> None:
        return None


class TokenBucketLimiter:
    """Shared admission control: at most ``capacity`` calls in a burst, refilled at ``rate_per_second``."""

    name = "token_bucket"

    def __init__(
        self,
        rate_per_second: float,
        capacity: int = 1,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        if rate_per_second <= 0:
            raise ValueError("Token bucket rate must be greater than zero.")
        if capacity < 1:
            raise ValueError("Token bucket capacity must be at least one.")
        self.rate_per_second = rate_per_second
        self.capacity = capacity
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated_at = clock()
        self._lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None

    @property
    def available_tokens(self) -> float:
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.rate_per_second)
        self._updated_at = now

    def _loop_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def acquire(self) -> None:
        async with self._loop_lock():
            while True:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                await self._sleep((1 - self._tokens) / self.rate_per_second)


def list_rate_limiters() -> list[str]:
    return ["fixed", "token_bucket", "none"]


def get_rate_limiter(
    name: str | None = None,
    *,
    delay_seconds: float = 2.0,
    rate_per_second: float | None = None,
    capacity: int = 1,
) -> RateLimiter:
    selected = (name or "fixed").strip().lower()
    if selected == "fixed":
        return FixedDelayLimiter(delay_seconds=delay_seconds)
    if selected == "token_bucket":
        rate = rate_per_second if rate_per_second is not None else (1 / delay_seconds if delay_seconds > 0 else 1.0)
        return TokenBucketLimiter(rate_per_second=rate, capacity=capacity)
    if selected == "none":
        return NoopLimiter()
    raise ValueError(
        f"Unknown rate limiter '{selected}'. "
        f"Available limiters: {', '.join(list_rate_limiters())}."
    )
