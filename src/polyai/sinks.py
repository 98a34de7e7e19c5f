"""Log entries and the sinks that receive them.

A sink is anything with an async ``log(entry)`` method. The logging
middleware never awaits a sink on the unary hot path, so sinks are free to do
I/O; they may be called concurrently.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

import structlog

from .metrics import cost_usd_total, request_latency_seconds, requests_total, tokens_total

OPERATION_GENERATE = "Generate"
OPERATION_GENERATE_STREAM = "GenerateStream"


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    duration_seconds: float
    provider: str
    model: str
    operation: str
    error: BaseException | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0
    request_payload: str = ""
    response_payload: str = ""
    trace_id: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_fields(self) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "entry_id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": round(self.duration_seconds * 1000, 3),
            "provider": self.provider,
            "model": self.model,
            "operation": self.operation,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "cost_usd": self.cost_usd,
            "trace_id": self.trace_id,
        }
        if self.error is not None:
            fields["error"] = f"{type(self.error).__name__}: {self.error}"
        if self.request_payload:
            fields["request_payload"] = self.request_payload
        if self.response_payload:
            fields["response_payload"] = self.response_payload
        return fields


@runtime_checkable
class LogSink(Protocol):
    async def log(self, entry: LogEntry) -> None: ...


class NoOpSink:
    async def log(self, entry: LogEntry) -> None:
        return None


class StructlogSink:
    """Writes each entry as one structured ``llm_call`` event."""

    def __init__(self, logger: Any | None = None, *, event: str = "llm_call"):
        self._log = logger or structlog.get_logger("polyai.telemetry")
        self._event = event

    async def log(self, entry: LogEntry) -> None:
        if entry.ok:
            self._log.info(self._event, **entry.as_fields())
        else:
            self._log.warning(self._event, **entry.as_fields())


class MetricsSink:
    """Feeds the prometheus counters in ``polyai.metrics``."""

    async def log(self, entry: LogEntry) -> None:
        status = "success" if entry.ok else "error"
        requests_total.labels(provider=entry.provider, operation=entry.operation, status=status).inc()
        request_latency_seconds.labels(provider=entry.provider, operation=entry.operation).observe(
            max(0.0, entry.duration_seconds)
        )
        if entry.input_tokens:
            tokens_total.labels(provider=entry.provider, kind="input").inc(entry.input_tokens)
        if entry.output_tokens:
            tokens_total.labels(provider=entry.provider, kind="output").inc(entry.output_tokens)
        if entry.cost_usd > 0:
            cost_usd_total.labels(provider=entry.provider).inc(entry.cost_usd)


class FanoutSink:
    """Delivers every entry to each child sink; one failing child does not starve the others."""

    def __init__(self, *sinks: LogSink):
        self._sinks = sinks

    async def log(self, entry: LogEntry) -> None:
        failures: list[Exception] = []
        for sink in self._sinks:
            try:
                await sink.log(entry)
            except Exception as e:
                failures.append(e)
        if failures:
            raise failures[0]


__all__ = [
    "FanoutSink",
    "LogEntry",
    "LogSink",
    "MetricsSink",
    "NoOpSink",
    "OPERATION_GENERATE",
    "OPERATION_GENERATE_STREAM",
    "StructlogSink",
]
