from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from ..provider import PacketStream, Provider, ProviderMiddleware, close_stream
from ..sinks import OPERATION_GENERATE, OPERATION_GENERATE_STREAM, LogEntry, LogSink, NoOpSink
from ..types import ChatRequest, ChatResponse, StreamPacket, TokenUsage

log = structlog.get_logger()

MAX_PAYLOAD_CHARS = 2000
TRUNCATION_MARKER = "...[truncated]"


@dataclass(frozen=True)
class LoggingOptions:
    log_payloads: bool = False
    log_errors_only: bool = False
    max_payload_chars: int = MAX_PAYLOAD_CHARS


def truncate(text: str, limit: int = MAX_PAYLOAD_CHARS) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


class LoggingMiddleware(ProviderMiddleware):
    """Emits one LogEntry per call to a sink without making the caller wait for it.

    Unary entries are handed to a detached task. Streams are relayed packet by
    packet and summarised in a single entry once the source is exhausted.
    """

    def __init__(
        self,
        provider: Provider,
        sink: LogSink | None = None,
        options: LoggingOptions | None = None,
        *,
        clock: Callable[[], float] | None = None,
    ):
        super().__init__(provider)
        self._sink: LogSink = sink or NoOpSink()
        self.options = options or LoggingOptions()
        self._clock: Callable[[], float] = clock or time.perf_counter
        self._pending: set[asyncio.Task[None]] = set()

    async def generate(self, request: ChatRequest) -> ChatResponse:
        started = self._clock()
        response: ChatResponse | None = None
        error: BaseException | None = None
        try:
            response = await self._next.generate(request)
            return response
        except BaseException as e:
            error = e
            raise
        finally:
            if self._wants(error):
                entry = self._build_entry(
                    request,
                    operation=OPERATION_GENERATE,
                    duration=self._clock() - started,
                    error=error,
                    usage=response.usage if response is not None else None,
                    response_text=response.content if response is not None else "",
                )
                self._dispatch(entry)

    async def generate_stream(self, request: ChatRequest) -> PacketStream:
        started = self._clock()
        try:
            source = await self._next.generate_stream(request)
        except Exception as e:
            if self._wants(e):
                entry = self._build_entry(
                    request,
                    operation=OPERATION_GENERATE_STREAM,
                    duration=self._clock() - started,
                    error=e,
                )
                await self._deliver(entry)
            raise
        return self._relay(request, source, started)

    async def _relay(self, request: ChatRequest, source: PacketStream, started: float) -> AsyncIterator[StreamPacket]:
        parts: list[str] = []
        usage: TokenUsage | None = None
        error: BaseException | None = None
        try:
            async for packet in source:
                if packet.error is not None:
                    error = packet.error
                if packet.chunk and self.options.log_payloads:
                    parts.append(packet.chunk)
                if packet.usage is not None:
                    usage = packet.usage
                yield packet
        except BaseException as e:
            # includes a consumer that cancels or abandons the stream
            error = e
            raise
        finally:
            await close_stream(source)
            if self._wants(error):
                entry = self._build_entry(
                    request,
                    operation=OPERATION_GENERATE_STREAM,
                    duration=self._clock() - started,
                    error=error,
                    usage=usage,
                    response_text="".join(parts),
                )
                self._dispatch(entry)

    def _wants(self, error: BaseException | None) -> bool:
        return error is not None or not self.options.log_errors_only

    def _build_entry(
        self,
        request: ChatRequest,
        *,
        operation: str,
        duration: float,
        error: BaseException | None = None,
        usage: TokenUsage | None = None,
        response_text: str = "",
    ) -> LogEntry:
        usage = usage or TokenUsage()
        limit = self.options.max_payload_chars
        return LogEntry(
            timestamp=datetime.now(timezone.utc),
            duration_seconds=max(0.0, duration),
            provider=self._next.name,
            model=request.model,
            operation=operation,
            error=error,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_tokens=usage.total_tokens,
            cost_usd=usage.cost_usd,
            request_payload=truncate(request.summary(), limit) if self.options.log_payloads else "",
            response_payload=truncate(response_text, limit) if self.options.log_payloads else "",
            trace_id=request.trace_id,
        )

    def _dispatch(self, entry: LogEntry) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(entry))
        except RuntimeError:
            # No running loop (stream relay finalised during loop shutdown).
            log.warning("log_entry_dropped", provider=entry.provider, operation=entry.operation)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, entry: LogEntry) -> None:
        try:
            await self._sink.log(entry)
        except Exception as e:
            log.warning("log_sink_failed", provider=entry.provider, operation=entry.operation, error=str(e))

    async def drain(self) -> None:
        """Wait for every entry emitted so far to reach the sink."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self._next.aclose()


__all__ = ["LoggingMiddleware", "LoggingOptions", "MAX_PAYLOAD_CHARS", "TRUNCATION_MARKER", "truncate"]
