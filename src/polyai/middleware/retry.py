from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from ..errors import RetriesExhaustedError
from ..metrics import retries_total
from ..provider import PacketStream, Provider, ProviderMiddleware
from ..types import ChatRequest, ChatResponse

log = structlog.get_logger()

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_SECONDS = 2.0
DEFAULT_MAX_DELAY_SECONDS = 30.0


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS
    max_delay_seconds: float = DEFAULT_MAX_DELAY_SECONDS

    def normalized(self) -> "RetryConfig":
        return RetryConfig(
            max_retries=self.max_retries if self.max_retries > 0 else DEFAULT_MAX_RETRIES,
            base_delay_seconds=self.base_delay_seconds if self.base_delay_seconds > 0 else DEFAULT_BASE_DELAY_SECONDS,
            max_delay_seconds=self.max_delay_seconds if self.max_delay_seconds > 0 else DEFAULT_MAX_DELAY_SECONDS,
        )

    def backoff(self, attempt_index: int) -> float:
        # attempt_index: 0-based retry count (0 for first retry)
        return float(min(self.max_delay_seconds, self.base_delay_seconds * (2**attempt_index)))


def _always(_: Exception) -> bool:
    return True


def _cancel_requested() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


class ResilientClient(ProviderMiddleware):
    """Retries failed unary calls with capped exponential backoff.

    Cancellation is never retried: it propagates out of the wrapped call or
    out of the backoff sleep as-is. Streams are passed through.
    """

    def __init__(
        self,
        provider: Provider,
        config: RetryConfig | None = None,
        *,
        retry_if: Callable[[Exception], bool] | None = None,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
    ):
        super().__init__(provider)
        self.config = (config or RetryConfig()).normalized()
        self._retry_if = retry_if or _always
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep

    @property
    def name(self) -> str:
        return f"{self._next.name} (Resilient)"

    async def generate(self, request: ChatRequest) -> ChatResponse:
        max_retries = self.config.max_retries
        attempt = 0
        while True:
            try:
                return await self._next.generate(request)
            except Exception as e:
                if not self._retry_if(e):
                    raise
                log.warning(
                    "provider_call_failed",
                    provider=self._next.name,
                    attempt=attempt + 1,
                    max_attempts=max_retries + 1,
                    error=str(e),
                )
                if _cancel_requested():
                    raise asyncio.CancelledError() from e
                if attempt >= max_retries:
                    raise RetriesExhaustedError(e, attempts=attempt + 1) from e
            delay = self.config.backoff(attempt)
            retries_total.labels(provider=self._next.name).inc()
            log.info("retry_scheduled", provider=self._next.name, delay_seconds=delay, attempt=attempt + 1)
            await self._sleep(delay)
            attempt += 1

    async def generate_stream(self, request: ChatRequest) -> PacketStream:
        return await self._next.generate_stream(request)


__all__ = ["ResilientClient", "RetryConfig"]
