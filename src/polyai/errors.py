from __future__ import annotations


class ProviderError(Exception):
    """Base error for provider failures."""


class ConfigurationError(ProviderError):
    pass


class AuthenticationError(ProviderError):
    pass


class RateLimitError(ProviderError):
    def __init__(self, retry_after_seconds: int | None = None, message: str = "Rate limited"):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class ProviderDownError(ProviderError):
    """Backend unreachable (connect error, timeout, broken transport)."""

    def __init__(self, message: str = "Provider is unreachable"):
        super().__init__(message)


class UpstreamStatusError(ProviderError):
    """Backend answered with a non-success status."""

    def __init__(self, status_code: int, message: str | None = None):
        super().__init__(message or f"Upstream error {status_code}.")
        self.status_code = status_code


class UpstreamProtocolError(ProviderError):
    """Unexpected upstream response shape / contract mismatch."""


class CircuitBreakerOpenError(ProviderError):
    def __init__(self, retry_after_seconds: int | None = None, message: str = "Circuit breaker is open"):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class RetriesExhaustedError(ProviderError):
    def __init__(self, last_error: BaseException, attempts: int):
        super().__init__(f"max retries exceeded after {attempts} attempts: {last_error}")
        self.last_error = last_error
        self.attempts = attempts


class FallbackError(ProviderError):
    """Both primary and secondary providers failed."""


class StructuredOutputError(ProviderError):
    def __init__(self, message: str, *, raw: str = "", extracted: str | None = None):
        super().__init__(message)
        self.raw = raw
        self.extracted = extracted


class SchemaGenerationError(StructuredOutputError):
    pass


class NoJSONFoundError(StructuredOutputError):
    pass


class EmptyResultError(StructuredOutputError):
    pass


class StructuredParseError(StructuredOutputError):
    pass
