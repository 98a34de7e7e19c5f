"""Assembly of a provider chain from a base backend and middleware layers."""

from __future__ import annotations

from collections.abc import Callable

from .config import ClientConfig
from .fallback import FallbackClient
from .logging import configure_logging
from .metrics import maybe_start_metrics
from .middleware import (
    CircuitBreaker,
    CostEstimator,
    LoggingMiddleware,
    LoggingOptions,
    RateLimiterMiddleware,
    ResilientClient,
    RetryConfig,
    TracingMiddleware,
)
from .provider import Provider
from .providers import create_provider
from .sinks import FanoutSink, LogSink, MetricsSink, StructlogSink

Layer = Callable[[Provider], Provider]


def compose(base: Provider, *layers: Layer) -> Provider:
    """Applies `layers` innermost first: `compose(p, a, b)` is `b(a(p))`."""
    provider = base
    for layer in layers:
        provider = layer(provider)
    return provider


def configure_observability(cfg: ClientConfig) -> None:
    configure_logging(cfg.log_level, cfg.log_format, secrets=cfg.secrets())
    maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)


def build_base(cfg: ClientConfig) -> Provider:
    primary = create_provider(cfg.provider, cfg.provider_options())
    if not cfg.fallback_provider:
        return primary
    secondary = create_provider(cfg.fallback_provider, cfg.fallback_options())
    return FallbackClient(primary, secondary)


def build_pipeline(cfg: ClientConfig, *, base: Provider | None = None, sink: LogSink | None = None) -> Provider:
    """Builds the standard chain around `base` (or the backend `cfg` names).

    From the inside out: cost, rate limit, retry, logging, circuit breaker,
    tracing.
    """
    layers: list[Layer] = [CostEstimator]
    if cfg.rate_limit_rps > 0:
        layers.append(lambda p: RateLimiterMiddleware(p, cfg.rate_limit_rps, cfg.rate_limit_burst))
    retry = RetryConfig(
        max_retries=cfg.max_retries,
        base_delay_seconds=cfg.retry_base_delay_seconds,
        max_delay_seconds=cfg.retry_max_delay_seconds,
    )
    log_options = LoggingOptions(log_payloads=cfg.log_payloads, log_errors_only=cfg.log_errors_only)
    log_sink = sink or FanoutSink(StructlogSink(), MetricsSink())
    layers += [
        lambda p: ResilientClient(p, retry),
        lambda p: LoggingMiddleware(p, log_sink, log_options),
        lambda p: CircuitBreaker(p, cfg.circuit_breaker_failures, cfg.circuit_breaker_reset_seconds),
        TracingMiddleware,
    ]
    return compose(base or build_base(cfg), *layers)


__all__ = ["Layer", "build_base", "build_pipeline", "compose", "configure_observability"]
