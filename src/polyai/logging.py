"""structlog setup with credential scrubbing for every supported backend."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

REDACTED = "[REDACTED]"

# Auth headers sent by the backends: OpenAI-compatible bearer, Anthropic, Gemini.
CREDENTIAL_HEADERS = frozenset({"authorization", "proxy-authorization", "x-api-key", "x-goog-api-key"})

_CREDENTIAL_MARKERS = ("key", "token", "secret", "password", "credential")
_TELEMETRY_FIELDS = frozenset({"input_tokens", "output_tokens", "total_tokens", "max_tokens"})

_BEARER_RE = re.compile(r"(?i)\bBearer\s+[A-Za-z0-9._-]{6,}")
# Gemini authenticates with ?key=..., which shows up in transport error messages.
_QUERY_KEY_RE = re.compile(r"([?&]key=)[^&\s\"']+")


def is_credential_field(name: str) -> bool:
    name = name.lower()
    if name in _TELEMETRY_FIELDS:
        return False
    return name in CREDENTIAL_HEADERS or any(marker in name for marker in _CREDENTIAL_MARKERS)


@dataclass(frozen=True)
class Redactor:
    """structlog processor that scrubs an event before it is rendered.

    Values under credential-looking keys are replaced outright, at any depth.
    Strings have the configured secrets, bearer tokens and `key=` query
    parameters masked.
    """

    secrets: tuple[str, ...] = ()

    @classmethod
    def for_secrets(cls, secrets: Iterable[str | None]) -> Redactor:
        return cls(tuple(s for s in secrets if s))

    def __call__(self, _logger: WrappedLogger, _method_name: str, event_dict: EventDict) -> EventDict:
        return self._mapping(event_dict)

    def _mapping(self, values: Mapping[Any, Any]) -> dict[Any, Any]:
        return {k: REDACTED if is_credential_field(str(k)) else self.scrub(v) for k, v in values.items()}

    def scrub(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.text(value)
        if isinstance(value, dict):
            return self._mapping(value)
        if isinstance(value, list):
            return [self.scrub(v) for v in value]
        return value

    def text(self, value: str) -> str:
        for secret in self.secrets:
            value = value.replace(secret, REDACTED)
        value = _BEARER_RE.sub(f"Bearer {REDACTED}", value)
        return _QUERY_KEY_RE.sub(rf"\g<1>{REDACTED}", value)


def configure_logging(level: str = "INFO", fmt: str = "json", *, secrets: Iterable[str | None] = ()) -> None:
    threshold = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=threshold)

    renderer: Processor
    if fmt == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            Redactor.for_secrets(secrets),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        cache_logger_on_first_use=True,
    )


__all__ = ["CREDENTIAL_HEADERS", "REDACTED", "Redactor", "configure_logging", "is_credential_field"]
