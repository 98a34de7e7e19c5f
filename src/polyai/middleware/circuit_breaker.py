from __future__ import annotations

import threading
import time
from collections.abc import Callable
from enum import Enum

import structlog

from ..errors import CircuitBreakerOpenError
from ..metrics import circuit_breaker_events_total
from ..provider import PacketStream, Provider, ProviderMiddleware
from ..types import ChatRequest, ChatResponse

log = structlog.get_logger()


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker(ProviderMiddleware):
    """Fast-fails unary calls after `failure_threshold` consecutive failures.

    After `reset_timeout_seconds` since the last failure one trial call is let
    through (half-open). A successful trial closes the circuit, a failed one
    re-opens it and restarts the timer. Streams are passed through unprotected.

    The lock only guards state bookkeeping; the wrapped call runs outside it.
    """

    def __init__(
        self,
        provider: Provider,
        failure_threshold: int = 5,
        reset_timeout_seconds: float = 30.0,
        *,
        clock: Callable[[], float] | None = None,
    ):
        super().__init__(provider)
        self._threshold = max(1, int(failure_threshold))
        self._reset_seconds = max(0.0, float(reset_timeout_seconds))
        self._clock: Callable[[], float] = clock or time.monotonic

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_at: float | None = None
        self._trial_in_flight = False

    @property
    def name(self) -> str:
        return f"{self._next.name} (Protected)"

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    def _retry_after_locked(self) -> int:
        if self._last_failure_at is None:
            return 0
        remaining = self._reset_seconds - (self._clock() - self._last_failure_at)
        return max(0, int(remaining) + 1)

    def _admit(self) -> bool:
        """Returns True when the admitted call is the half-open trial."""
        with self._lock:
            if self._state is CircuitState.CLOSED:
                return False
            if self._state is CircuitState.OPEN:
                elapsed = self._clock() - (self._last_failure_at or 0.0)
                if elapsed < self._reset_seconds:
                    circuit_breaker_events_total.labels(event="short_circuit").inc()
                    raise CircuitBreakerOpenError(retry_after_seconds=self._retry_after_locked())
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = True
                circuit_breaker_events_total.labels(event="half_open").inc()
                log.info("circuit_breaker_half_open", provider=self._next.name)
                return True
            # half-open with the trial still running
            circuit_breaker_events_total.labels(event="short_circuit").inc()
            raise CircuitBreakerOpenError(retry_after_seconds=0, message="Circuit breaker trial in progress")

    def _on_success(self, trial: bool) -> None:
        with self._lock:
            if trial:
                self._trial_in_flight = False
            if self._state is CircuitState.HALF_OPEN:
                circuit_breaker_events_total.labels(event="close").inc()
                log.info("circuit_breaker_closed", provider=self._next.name)
            self._state = CircuitState.CLOSED
            self._failures = 0

    def _on_failure(self, trial: bool, error: Exception) -> None:
        with self._lock:
            if trial:
                self._trial_in_flight = False
            self._failures += 1
            self._last_failure_at = self._clock()
            if self._state is CircuitState.HALF_OPEN or self._failures >= self._threshold:
                if self._state is not CircuitState.OPEN:
                    circuit_breaker_events_total.labels(event="open").inc()
                    log.warning(
                        "circuit_breaker_open",
                        provider=self._next.name,
                        failures=self._failures,
                        threshold=self._threshold,
                        error=str(error),
                    )
                self._state = CircuitState.OPEN
            else:
                log.debug("circuit_breaker_failure", provider=self._next.name, failures=self._failures)

    def _on_abandoned_trial(self) -> None:
        # Cancelled trial: not a provider failure, but the trial slot must be released.
        with self._lock:
            self._trial_in_flight = False
            if self._state is CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN

    async def generate(self, request: ChatRequest) -> ChatResponse:
        trial = self._admit()
        try:
            response = await self._next.generate(request)
        except Exception as e:
            self._on_failure(trial, e)
            raise
        except BaseException:
            if trial:
                self._on_abandoned_trial()
            raise
        self._on_success(trial)
        return response

    async def generate_stream(self, request: ChatRequest) -> PacketStream:
        return await self._next.generate_stream(request)


__all__ = ["CircuitBreaker", "CircuitState"]
