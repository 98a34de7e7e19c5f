from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

requests_total = Counter(
    "polyai_requests_total",
    "Total provider calls observed by the logging middleware",
    labelnames=["provider", "operation", "status"],
)

request_latency_seconds = Histogram(
    "polyai_request_latency_seconds",
    "Provider call latency (seconds)",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120],
    labelnames=["provider", "operation"],
)

tokens_total = Counter(
    "polyai_tokens_total",
    "Tokens consumed",
    labelnames=["provider", "kind"],
)

cost_usd_total = Counter(
    "polyai_cost_usd_total",
    "Estimated spend in USD",
    labelnames=["provider"],
)

circuit_breaker_events_total = Counter(
    "circuit_breaker_events_total",
    "Circuit breaker events",
    labelnames=["event"],
)

retries_total = Counter(
    "retries_total",
    "Retry attempts scheduled after a failed call",
    labelnames=["provider"],
)

fallback_events_total = Counter(
    "fallback_events_total",
    "Fallback client events",
    labelnames=["event"],
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
