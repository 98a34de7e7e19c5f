from __future__ import annotations

import asyncio

import structlog

from .errors import FallbackError
from .metrics import fallback_events_total
from .provider import PacketStream, Provider
from .types import ChatRequest, ChatResponse, ProviderOptions

log = structlog.get_logger()


class FallbackClient(Provider):
    """Serves unary calls from `primary`, switching to `secondary` when it fails.

    Streams always go to the primary: a partially delivered stream cannot be
    replayed on another backend.
    """

    def __init__(self, primary: Provider, secondary: Provider):
        self.primary = primary
        self.secondary = secondary

    @property
    def name(self) -> str:
        return f"Fallback({self.primary.name} -> {self.secondary.name})"

    def configure(self, options: ProviderOptions) -> None:
        self.primary.configure(options)
        self.secondary.configure(options)

    async def generate(self, request: ChatRequest) -> ChatResponse:
        try:
            return await self.primary.generate(request)
        except Exception as primary_error:
            fallback_events_total.labels(event="secondary_attempt").inc()
            log.warning(
                "fallback_to_secondary",
                primary=self.primary.name,
                secondary=self.secondary.name,
                error=str(primary_error),
            )
            try:
                return await self.secondary.generate(request)
            except Exception as secondary_error:
                fallback_events_total.labels(event="both_failed").inc()
                log.error(
                    "fallback_exhausted",
                    primary=self.primary.name,
                    secondary=self.secondary.name,
                    primary_error=str(primary_error),
                    secondary_error=str(secondary_error),
                )
                raise FallbackError(
                    f"both primary ({self.primary.name}) and secondary ({self.secondary.name}) providers failed"
                ) from None

    async def generate_stream(self, request: ChatRequest) -> PacketStream:
        return await self.primary.generate_stream(request)

    async def aclose(self) -> None:
        await asyncio.gather(self.primary.aclose(), self.secondary.aclose())


__all__ = ["FallbackClient"]
