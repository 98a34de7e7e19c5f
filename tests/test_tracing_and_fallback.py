import pytest
import structlog

from polyai.errors import AuthenticationError, ConfigurationError, FallbackError, ProviderDownError
from polyai.fallback import FallbackClient
from polyai.middleware import TracingMiddleware
from polyai.providers import MockProvider
from polyai.types import ChatMessage, ChatRequest, ProviderOptions


def _req(trace_id: str | None = None) -> ChatRequest:
    return ChatRequest(messages=(ChatMessage.from_text("user", "hi"),), trace_id=trace_id)


@pytest.mark.asyncio
async def test_tracing_preserves_existing_trace_id():
    mock = MockProvider()
    await TracingMiddleware(mock).generate(_req("abc"))
    assert mock.calls[0].trace_id == "abc"


@pytest.mark.asyncio
async def test_tracing_generates_distinct_ids_when_missing():
    mock = MockProvider()
    tracer = TracingMiddleware(mock)
    await tracer.generate(_req())
    await tracer.generate(_req())

    first, second = (c.trace_id for c in mock.calls)
    assert first and second and first != second
    assert len(first) == 32


@pytest.mark.asyncio
async def test_tracing_binds_trace_id_for_downstream_logs():
    seen: dict[str, object] = {}

    class Recorder(MockProvider):
        async def generate(self, request):
            seen.update(structlog.contextvars.get_contextvars())
            return await super().generate(request)

    await TracingMiddleware(Recorder()).generate(_req("xyz"))
    assert seen.get("trace_id") == "xyz"
    assert "trace_id" not in structlog.contextvars.get_contextvars()


@pytest.mark.asyncio
async def test_tracing_stream_request_carries_trace_id():
    mock = MockProvider()
    stream = await TracingMiddleware(mock).generate_stream(_req())
    assert [p async for p in stream]
    assert mock.calls[0].trace_id


@pytest.mark.asyncio
async def test_fallback_uses_primary_when_healthy():
    primary = MockProvider(response="primary")
    secondary = MockProvider(response="secondary")
    out = await FallbackClient(primary, secondary).generate(_req())

    assert out.content == "primary"
    assert secondary.call_count == 0


@pytest.mark.asyncio
async def test_fallback_switches_to_secondary_on_failure():
    primary = MockProvider(always_fail=True)
    secondary = MockProvider(response="secondary")
    out = await FallbackClient(primary, secondary).generate(_req())

    assert out.content == "secondary"
    assert primary.call_count == 1


@pytest.mark.asyncio
async def test_fallback_reports_both_failures():
    primary = MockProvider(always_fail=True, display_name="A")
    secondary = MockProvider(always_fail=True, error=AuthenticationError("nope"), display_name="B")
    client = FallbackClient(primary, secondary)

    with pytest.raises(FallbackError) as ei:
        await client.generate(_req())

    assert "A" in str(ei.value) and "B" in str(ei.value)
    assert ei.value.__cause__ is None
    assert client.name == "Fallback(A -> B)"


@pytest.mark.asyncio
async def test_fallback_stream_goes_to_primary_only():
    primary = MockProvider(always_fail=True)
    secondary = MockProvider()
    with pytest.raises(ProviderDownError):
        await FallbackClient(primary, secondary).generate_stream(_req())
    assert secondary.call_count == 0


@pytest.mark.asyncio
async def test_fallback_configures_and_closes_both():
    primary, secondary = MockProvider(), MockProvider()
    client = FallbackClient(primary, secondary)
    client.configure(ProviderOptions(model="m2"))
    await client.aclose()

    assert primary.model == secondary.model == "m2"
    assert primary.closed and secondary.closed


class _RejectsOptions(MockProvider):
    def configure(self, options: ProviderOptions) -> None:
        raise ConfigurationError("model not available in this region")


def test_fallback_primary_configure_failure_leaves_secondary_untouched():
    secondary = MockProvider(model="backup")
    client = FallbackClient(_RejectsOptions(), secondary)

    with pytest.raises(ConfigurationError):
        client.configure(ProviderOptions(model="m2", max_tokens=64))

    assert secondary.model == "backup"
    assert secondary.options == ProviderOptions()
