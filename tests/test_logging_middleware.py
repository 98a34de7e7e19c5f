import asyncio
from datetime import datetime

import pytest

from polyai.errors import ProviderDownError
from polyai.middleware import LoggingMiddleware, LoggingOptions
from polyai.middleware.logging import TRUNCATION_MARKER, truncate
from polyai.providers import MockProvider
from polyai.sinks import FanoutSink, LogEntry, StructlogSink
from polyai.types import ChatMessage, ChatRequest


def _req() -> ChatRequest:
    return ChatRequest(messages=(ChatMessage.from_text("user", "hi"),), model="mock-model", trace_id="t-1")


class ListSink:
    def __init__(self) -> None:
        self.entries: list[LogEntry] = []

    async def log(self, entry: LogEntry) -> None:
        self.entries.append(entry)


class BrokenSink:
    async def log(self, entry: LogEntry) -> None:
        raise RuntimeError("disk full")


@pytest.mark.asyncio
async def test_unary_call_emits_one_entry():
    sink = ListSink()
    mw = LoggingMiddleware(MockProvider(), sink)

    out = await mw.generate(_req())
    await mw.drain()

    assert out.content == "This is a mock response."
    assert len(sink.entries) == 1
    entry = sink.entries[0]
    assert entry.operation == "Generate"
    assert entry.provider == "Mock AI"
    assert entry.model == "mock-model"
    assert entry.trace_id == "t-1"
    assert (entry.input_tokens, entry.output_tokens, entry.total_tokens) == (15, 20, 35)
    assert entry.ok
    assert entry.request_payload == ""
    assert entry.response_payload == ""


@pytest.mark.asyncio
async def test_payloads_are_recorded_when_enabled():
    sink = ListSink()
    mw = LoggingMiddleware(MockProvider(response="pong"), sink, LoggingOptions(log_payloads=True))

    await mw.generate(_req())
    await mw.drain()

    assert sink.entries[0].request_payload == "user: hi"
    assert sink.entries[0].response_payload == "pong"


@pytest.mark.asyncio
async def test_failed_call_is_logged_and_error_propagates():
    sink = ListSink()
    mw = LoggingMiddleware(MockProvider(always_fail=True), sink)

    with pytest.raises(ProviderDownError):
        await mw.generate(_req())
    await mw.drain()

    assert len(sink.entries) == 1
    assert isinstance(sink.entries[0].error, ProviderDownError)
    assert not sink.entries[0].ok


@pytest.mark.asyncio
async def test_errors_only_skips_successful_calls():
    sink = ListSink()
    mw = LoggingMiddleware(MockProvider(fail_times=1), sink, LoggingOptions(log_errors_only=True))

    with pytest.raises(ProviderDownError):
        await mw.generate(_req())
    await mw.generate(_req())
    await mw.drain()

    assert len(sink.entries) == 1
    assert sink.entries[0].error is not None


@pytest.mark.asyncio
async def test_stream_is_summarised_after_exhaustion():
    sink = ListSink()
    mw = LoggingMiddleware(MockProvider(chunks=("Hello", " World")), sink, LoggingOptions(log_payloads=True))

    stream = await mw.generate_stream(_req())
    await mw.drain()
    assert sink.entries == []

    text = "".join([p.chunk async for p in stream])
    await mw.drain()

    assert text == "Hello World"
    assert len(sink.entries) == 1
    entry = sink.entries[0]
    assert entry.operation == "GenerateStream"
    assert entry.response_payload == "Hello World"
    assert entry.total_tokens == 35


@pytest.mark.asyncio
async def test_stream_error_packet_is_recorded():
    sink = ListSink()
    mw = LoggingMiddleware(MockProvider(chunks=("a",), stream_error=ProviderDownError("cut")), sink)

    stream = await mw.generate_stream(_req())
    packets = [p async for p in stream]
    await mw.drain()

    assert packets[-1].error is not None
    assert str(sink.entries[0].error) == "cut"


@pytest.mark.asyncio
async def test_stream_setup_failure_is_logged_before_raising():
    sink = ListSink()
    mw = LoggingMiddleware(MockProvider(always_fail=True), sink)

    with pytest.raises(ProviderDownError):
        await mw.generate_stream(_req())

    assert len(sink.entries) == 1
    assert sink.entries[0].operation == "GenerateStream"


@pytest.mark.asyncio
async def test_abandoned_stream_is_logged_as_failure():
    sink = ListSink()
    mw = LoggingMiddleware(MockProvider(chunks=("a", "b", "c")), sink)

    stream = await mw.generate_stream(_req())
    first = await stream.__anext__()
    await stream.aclose()
    await mw.drain()

    assert first.chunk == "a"
    assert len(sink.entries) == 1
    assert isinstance(sink.entries[0].error, GeneratorExit)
    assert not sink.entries[0].ok


@pytest.mark.asyncio
async def test_cancelled_stream_is_logged_as_failure():
    sink = ListSink()
    mw = LoggingMiddleware(MockProvider(chunks=("a", "b"), latency_seconds=10), sink)
    stream = await mw.generate_stream(_req())

    async def consume() -> None:
        async for _ in stream:
            pass

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await mw.drain()

    assert len(sink.entries) == 1
    assert isinstance(sink.entries[0].error, asyncio.CancelledError)
    assert not sink.entries[0].ok


@pytest.mark.asyncio
async def test_sink_failure_never_reaches_caller():
    mw = LoggingMiddleware(MockProvider(), BrokenSink())

    out = await mw.generate(_req())
    await mw.drain()
    assert out.content


@pytest.mark.asyncio
async def test_fanout_delivers_to_healthy_sinks_despite_failures():
    sink = ListSink()
    mw = LoggingMiddleware(MockProvider(), FanoutSink(BrokenSink(), sink, StructlogSink()))

    await mw.generate(_req())
    await mw.drain()
    assert len(sink.entries) == 1


@pytest.mark.asyncio
async def test_aclose_drains_pending_entries():
    sink = ListSink()
    mock = MockProvider()
    mw = LoggingMiddleware(mock, sink)

    await mw.generate(_req())
    await mw.aclose()

    assert len(sink.entries) == 1
    assert mock.closed


def test_truncate_marks_clipped_payloads():
    assert truncate("abcdef", 4) == "abcd" + TRUNCATION_MARKER
    assert truncate("abc", 4) == "abc"


def test_entry_fields_include_error_text():
    entry = LogEntry(
        timestamp=datetime(2024, 1, 1),
        duration_seconds=0.25,
        provider="p",
        model="m",
        operation="Generate",
        error=ProviderDownError("down"),
    )
    fields = entry.as_fields()
    assert fields["error"] == "ProviderDownError: down"
    assert fields["duration_ms"] == 250.0
    assert "request_payload" not in fields
