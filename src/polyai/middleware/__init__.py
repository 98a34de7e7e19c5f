"""Provider middleware: each class wraps a Provider and is itself a Provider."""

from .circuit_breaker import CircuitBreaker, CircuitState
from .cost import DEFAULT_PRICING, CostEstimator, ModelPrice, PricingTable
from .logging import LoggingMiddleware, LoggingOptions
from .rate_limiter import RateLimiterMiddleware, TokenBucket
from .retry import ResilientClient, RetryConfig
from .tracing import TracingMiddleware

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "CostEstimator",
    "DEFAULT_PRICING",
    "LoggingMiddleware",
    "LoggingOptions",
    "ModelPrice",
    "PricingTable",
    "RateLimiterMiddleware",
    "ResilientClient",
    "RetryConfig",
    "TokenBucket",
    "TracingMiddleware",
]
