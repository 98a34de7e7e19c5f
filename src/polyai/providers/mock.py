from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence

from ..errors import ProviderDownError
from ..provider import PacketStream, Provider
from ..types import ChatRequest, ChatResponse, ProviderOptions, StreamPacket, TokenUsage


class MockProvider(Provider):
    """Scripted in-process backend for tests and demos.

    The first `fail_times` calls (or every call with `always_fail`) raise
    `error`; after that `generate` answers `response` and `generate_stream`
    yields `chunks` followed by a usage packet.
    """

    def __init__(
        self,
        response: str = "This is a mock response.",
        *,
        chunks: Sequence[str] = ("This ", "is ", "a ", "mock ", "stream."),
        usage: TokenUsage | None = None,
        fail_times: int = 0,
        always_fail: bool = False,
        error: Exception | None = None,
        stream_error: Exception | None = None,
        latency_seconds: float = 0.0,
        model: str = "mock-model",
        display_name: str = "Mock AI",
    ):
        self.response = response
        self.chunks = tuple(chunks)
        self.usage = usage or TokenUsage(input_tokens=15, output_tokens=20)
        self.fail_times = fail_times
        self.always_fail = always_fail
        self.error = error
        self.stream_error = stream_error
        self.latency_seconds = latency_seconds
        self.model = model
        self.display_name = display_name
        self.options = ProviderOptions()
        self.calls: list[ChatRequest] = []
        self.closed = False

    @property
    def name(self) -> str:
        return self.display_name

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def configure(self, options: ProviderOptions) -> None:
        updates = {k: v for k, v in options.model_dump().items() if v}
        self.options = self.options.model_copy(update=updates)
        if options.model:
            self.model = options.model

    def _should_fail(self) -> bool:
        return self.always_fail or len(self.calls) <= self.fail_times

    def _failure(self) -> Exception:
        return self.error or ProviderDownError("Mock provider failure")

    async def generate(self, request: ChatRequest) -> ChatResponse:
        self.calls.append(request)
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)
        if self._should_fail():
            raise self._failure()
        return ChatResponse(content=self.response, usage=self.usage, model=request.model or self.model)

    async def generate_stream(self, request: ChatRequest) -> PacketStream:
        self.calls.append(request)
        if self._should_fail():
            raise self._failure()
        return self._stream(request.model or self.model)

    async def _stream(self, model: str) -> AsyncIterator[StreamPacket]:
        for chunk in self.chunks:
            if self.latency_seconds > 0:
                await asyncio.sleep(self.latency_seconds)
            yield StreamPacket(chunk=chunk)
        if self.stream_error is not None:
            yield StreamPacket(error=self.stream_error)
            return
        yield StreamPacket(usage=self.usage, model=model)

    async def aclose(self) -> None:
        self.closed = True


__all__ = ["MockProvider"]
