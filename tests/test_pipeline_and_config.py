import httpx
import pytest
import structlog

from polyai.config import ClientConfig
from polyai.errors import ConfigurationError
from polyai.fallback import FallbackClient
from polyai.middleware import (
    CircuitBreaker,
    CostEstimator,
    LoggingMiddleware,
    RateLimiterMiddleware,
    ResilientClient,
    TracingMiddleware,
)
from polyai.pipeline import build_base, build_pipeline, compose, configure_observability
from polyai.provider import ProviderMiddleware
from polyai.providers import MockProvider, OllamaProvider, OpenAIProvider, create_provider
from polyai.sinks import LogEntry
from polyai.types import ChatMessage, ChatRequest, ProviderOptions, TokenUsage


def _req(model: str = "") -> ChatRequest:
    return ChatRequest(messages=(ChatMessage.from_text("user", "hi"),), model=model)


def _chain(provider) -> list[type]:
    out = []
    while isinstance(provider, ProviderMiddleware):
        out.append(type(provider))
        provider = provider.wrapped
    out.append(type(provider))
    return out


class ListSink:
    def __init__(self) -> None:
        self.entries: list[LogEntry] = []

    async def log(self, entry: LogEntry) -> None:
        self.entries.append(entry)


def _cfg(**overrides) -> ClientConfig:
    values = dict(
        provider="mock",
        rate_limit_rps=0,
        max_retries=2,
        retry_base_delay_seconds=0.01,
        retry_max_delay_seconds=0.02,
        log_payloads=False,
        log_errors_only=False,
        fallback_provider=None,
    )
    values.update(overrides)
    return ClientConfig(**values)


def test_compose_applies_layers_inside_out():
    base = MockProvider()
    out = compose(base, CostEstimator, TracingMiddleware)
    assert _chain(out) == [TracingMiddleware, CostEstimator, MockProvider]


def test_pipeline_layer_order():
    chain = _chain(build_pipeline(_cfg(rate_limit_rps=5), base=MockProvider()))
    assert chain == [
        TracingMiddleware,
        CircuitBreaker,
        LoggingMiddleware,
        ResilientClient,
        RateLimiterMiddleware,
        CostEstimator,
        MockProvider,
    ]
    assert RateLimiterMiddleware not in _chain(build_pipeline(_cfg(), base=MockProvider()))


@pytest.mark.asyncio
async def test_pipeline_end_to_end_logs_priced_traced_call():
    sink = ListSink()
    mock = MockProvider(fail_times=1, usage=TokenUsage(input_tokens=50, output_tokens=20))
    client = build_pipeline(_cfg(), base=mock, sink=sink)

    out = await client.generate(_req("gpt-4o"))
    await client.aclose()

    assert mock.call_count == 2
    assert out.usage.cost_usd == pytest.approx(0.00055)
    assert len(sink.entries) == 1
    entry = sink.entries[0]
    assert entry.ok
    assert entry.trace_id
    assert entry.cost_usd == pytest.approx(0.00055)
    assert client.name == "Mock AI (Resilient) (Protected)"


def test_build_base_with_fallback():
    base = build_base(_cfg(fallback_provider="mock", fallback_model="backup-model"))
    assert isinstance(base, FallbackClient)
    assert isinstance(base.secondary, MockProvider)
    assert base.secondary.model == "backup-model"


@pytest.mark.asyncio
async def test_reconfiguring_pipeline_with_empty_options_keeps_settings():
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    base = OpenAIProvider("sk-1", model="gpt-4o", client=http)
    client = build_pipeline(_cfg(rate_limit_rps=5), base=base)
    try:
        client.configure(ProviderOptions(model="gpt-4o-mini", max_tokens=256))
        snapshot = (base.api_key, base.model, base.base_url, base.max_tokens, base.temperature, base.timeout_seconds)
        client.configure(ProviderOptions())
        client.configure(ProviderOptions(api_key="", model="", max_tokens=0, temperature=0, timeout_seconds=0))

        assert snapshot == ("sk-1", "gpt-4o-mini", "https://api.openai.com/v1", 256, None, 60.0)
        assert (base.api_key, base.model, base.base_url, base.max_tokens, base.temperature, base.timeout_seconds) == (
            snapshot
        )
        assert client.name == "OpenAI (gpt-4o-mini) (Resilient) (Protected)"
    finally:
        await client.aclose()


def test_config_reads_environment(monkeypatch):
    monkeypatch.setenv("POLYAI_PROVIDER", "ollama")
    monkeypatch.setenv("POLYAI_MODEL", "llama3:8b")
    monkeypatch.setenv("POLYAI_RATE_LIMIT_RPS", "2.5")
    monkeypatch.setenv("POLYAI_LOG_PAYLOADS", "true")
    monkeypatch.setenv("POLYAI_MAX_TOKENS", "128")
    monkeypatch.delenv("POLYAI_TEMPERATURE", raising=False)

    cfg = ClientConfig()

    assert cfg.provider == "ollama"
    assert cfg.rate_limit_rps == 2.5
    assert cfg.log_payloads is True
    opts = cfg.provider_options()
    assert (opts.model, opts.max_tokens, opts.temperature) == ("llama3:8b", 128, None)


@pytest.mark.asyncio
async def test_create_provider_applies_options():
    p = create_provider("OpenAI", ProviderOptions(api_key="sk", model="gpt-4o"))
    try:
        assert isinstance(p, OpenAIProvider)
        assert (p.api_key, p.model) == ("sk", "gpt-4o")
    finally:
        await p.aclose()

    local = create_provider("ollama")
    try:
        assert isinstance(local, OllamaProvider)
    finally:
        await local.aclose()

    assert create_provider("mock", ProviderOptions(model="m")).model == "m"


def test_create_provider_rejects_unknown_backend():
    with pytest.raises(ConfigurationError):
        create_provider("carrier-pigeon")


def test_configure_observability_installs_redaction(capsys):
    cfg = _cfg(api_key="sk-secret-value", log_format="json", enable_metrics=False)
    try:
        configure_observability(cfg)
        structlog.get_logger("test").info("startup", detail="key sk-secret-value leaked")
        out = capsys.readouterr().out
    finally:
        structlog.reset_defaults()

    assert "sk-secret-value" not in out
    assert "[REDACTED]" in out
