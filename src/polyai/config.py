from __future__ import annotations

import os

from pydantic import BaseModel, Field

from .types import ProviderOptions


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_float(name: str) -> float | None:
    value = os.getenv(name)
    return float(value) if value else None


def _env_int(name: str) -> int | None:
    value = os.getenv(name)
    return int(value) if value else None


class ClientConfig(BaseModel):
    # Backend
    provider: str = Field(default_factory=lambda: os.getenv("POLYAI_PROVIDER", "openai"))
    api_key: str | None = Field(default_factory=lambda: os.getenv("POLYAI_API_KEY"))
    base_url: str | None = Field(default_factory=lambda: os.getenv("POLYAI_BASE_URL"))
    model: str | None = Field(default_factory=lambda: os.getenv("POLYAI_MODEL"))
    timeout_seconds: float = Field(default_factory=lambda: float(os.getenv("POLYAI_TIMEOUT_SECONDS", "60")))
    temperature: float | None = Field(default_factory=lambda: _env_float("POLYAI_TEMPERATURE"))
    max_tokens: int | None = Field(default_factory=lambda: _env_int("POLYAI_MAX_TOKENS"))

    # Rate limiting (0 disables)
    rate_limit_rps: float = Field(default_factory=lambda: float(os.getenv("POLYAI_RATE_LIMIT_RPS", "0")))
    rate_limit_burst: int = Field(default_factory=lambda: int(os.getenv("POLYAI_RATE_LIMIT_BURST", "0")))

    # Retry
    max_retries: int = Field(default_factory=lambda: int(os.getenv("POLYAI_MAX_RETRIES", "3")))
    retry_base_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("POLYAI_RETRY_BASE_DELAY_SECONDS", "2.0"))
    )
    retry_max_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("POLYAI_RETRY_MAX_DELAY_SECONDS", "30.0"))
    )

    # Circuit breaker
    circuit_breaker_failures: int = Field(
        default_factory=lambda: int(os.getenv("POLYAI_CIRCUIT_BREAKER_FAILURES", "5"))
    )
    circuit_breaker_reset_seconds: float = Field(
        default_factory=lambda: float(os.getenv("POLYAI_CIRCUIT_BREAKER_RESET_SECONDS", "30"))
    )

    # Fallback (both unset disables)
    fallback_provider: str | None = Field(default_factory=lambda: os.getenv("POLYAI_FALLBACK_PROVIDER"))
    fallback_model: str | None = Field(default_factory=lambda: os.getenv("POLYAI_FALLBACK_MODEL"))
    fallback_api_key: str | None = Field(default_factory=lambda: os.getenv("POLYAI_FALLBACK_API_KEY"))

    # Observability
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))
    log_payloads: bool = Field(default_factory=lambda: _env_flag("POLYAI_LOG_PAYLOADS"))
    log_errors_only: bool = Field(default_factory=lambda: _env_flag("POLYAI_LOG_ERRORS_ONLY"))
    enable_metrics: bool = Field(default_factory=lambda: _env_flag("ENABLE_METRICS"))
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))

    def provider_options(self) -> ProviderOptions:
        return ProviderOptions(
            api_key=self.api_key,
            base_url=self.base_url,
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            timeout_seconds=self.timeout_seconds,
        )

    def fallback_options(self) -> ProviderOptions:
        return ProviderOptions(
            api_key=self.fallback_api_key,
            model=self.fallback_model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            timeout_seconds=self.timeout_seconds,
        )

    def secrets(self) -> list[str]:
        return [s for s in (self.api_key, self.fallback_api_key) if s]


__all__ = ["ClientConfig"]
