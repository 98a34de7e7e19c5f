from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

from ..provider import PacketStream, Provider, ProviderMiddleware
from ..types import ChatRequest, ChatResponse


class TokenBucket:
    """Async token bucket. A rate <= 0 disables throttling.

    Waiters queue on an asyncio.Lock, so admission is FIFO. Cancelling a
    waiter releases its place without consuming a token.
    """

    def __init__(
        self,
        rate_per_second: float,
        burst: int = 0,
        *,
        clock: Callable[[], float] | None = None,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
    ):
        self.rate = float(rate_per_second)
        self.unlimited = self.rate <= 0
        self.burst = int(burst) if burst > 0 else max(1, int(self.rate))
        self._clock: Callable[[], float] = clock or time.monotonic
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep
        self._tokens = float(self.burst)
        self._updated_at = self._clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._updated_at = now
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)

    async def acquire(self) -> None:
        if self.unlimited:
            return
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                await self._sleep((1.0 - self._tokens) / self.rate)


class RateLimiterMiddleware(ProviderMiddleware):
    def __init__(self, provider: Provider, rate_per_second: float, burst: int = 0, *, bucket: TokenBucket | None = None):
        super().__init__(provider)
        self.bucket = bucket or TokenBucket(rate_per_second, burst)

    async def generate(self, request: ChatRequest) -> ChatResponse:
        await self.bucket.acquire()
        return await self._next.generate(request)

    async def generate_stream(self, request: ChatRequest) -> PacketStream:
        await self.bucket.acquire()
        return await self._next.generate_stream(request)


__all__ = ["RateLimiterMiddleware", "TokenBucket"]
