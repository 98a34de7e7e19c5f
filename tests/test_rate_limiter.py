import asyncio
import time

import pytest

from polyai.middleware import RateLimiterMiddleware, TokenBucket
from polyai.providers import MockProvider
from polyai.types import ChatMessage, ChatRequest


def _req() -> ChatRequest:
    return ChatRequest(messages=(ChatMessage.from_text("user", "hi"),))


@pytest.mark.asyncio
async def test_ten_calls_at_five_per_second_take_about_a_second():
    mock = MockProvider()
    limiter = RateLimiterMiddleware(mock, rate_per_second=5, burst=5)

    started = time.monotonic()
    for _ in range(10):
        await limiter.generate(_req())
    elapsed = time.monotonic() - started

    assert mock.call_count == 10
    assert elapsed >= 0.9


@pytest.mark.asyncio
async def test_waits_are_computed_from_the_refill_rate():
    now = [0.0]
    delays: list[float] = []

    async def sleeper(seconds: float) -> None:
        delays.append(seconds)
        now[0] += seconds

    bucket = TokenBucket(2, burst=1, clock=lambda: now[0], sleeper=sleeper)
    await bucket.acquire()
    await bucket.acquire()
    await bucket.acquire()

    assert delays == [pytest.approx(0.5), pytest.approx(0.5)]


def test_burst_defaults_to_rate_with_floor_of_one():
    assert TokenBucket(2.5).burst == 2
    assert TokenBucket(0.5).burst == 1
    assert TokenBucket(3, burst=7).burst == 7


@pytest.mark.asyncio
async def test_non_positive_rate_is_unlimited():
    mock = MockProvider()
    limiter = RateLimiterMiddleware(mock, rate_per_second=0)
    assert limiter.bucket.unlimited

    await asyncio.wait_for(asyncio.gather(*(limiter.generate(_req()) for _ in range(50))), timeout=1)
    assert mock.call_count == 50


@pytest.mark.asyncio
async def test_cancelled_waiter_never_reaches_provider():
    mock = MockProvider()
    limiter = RateLimiterMiddleware(mock, rate_per_second=1, burst=1)
    await limiter.generate(_req())

    waiting = asyncio.create_task(limiter.generate(_req()))
    await asyncio.sleep(0.05)
    waiting.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiting
    assert mock.call_count == 1


@pytest.mark.asyncio
async def test_stream_setup_consumes_a_token():
    now = [0.0]
    delays: list[float] = []

    async def sleeper(seconds: float) -> None:
        delays.append(seconds)
        now[0] += seconds

    bucket = TokenBucket(1, burst=1, clock=lambda: now[0], sleeper=sleeper)
    limiter = RateLimiterMiddleware(MockProvider(), 1, bucket=bucket)

    await limiter.generate(_req())
    stream = await limiter.generate_stream(_req())
    assert [p async for p in stream]
    assert delays == [pytest.approx(1.0)]
