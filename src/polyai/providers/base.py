from __future__ import annotations

import dataclasses
import json
from abc import abstractmethod
from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog

from ..errors import (
    AuthenticationError,
    ProviderDownError,
    RateLimitError,
    UpstreamProtocolError,
    UpstreamStatusError,
)
from ..provider import PacketStream, Provider
from ..types import ChatRequest, ChatResponse, ProviderOptions, StreamPacket

log = structlog.get_logger()

DEFAULT_TIMEOUT_SECONDS = 60.0


def _retry_after(resp: httpx.Response) -> int | None:
    value = resp.headers.get("retry-after")
    return int(value) if value and value.isdigit() else None


def raise_for_upstream_status(resp: httpx.Response, *, provider: str) -> None:
    if resp.status_code in (401, 403):
        raise AuthenticationError(f"{provider} rejected credentials (status {resp.status_code}).")
    if resp.status_code == 429:
        raise RateLimitError(retry_after_seconds=_retry_after(resp), message=f"{provider} rate limited the request.")
    if resp.status_code >= 400:
        raise UpstreamStatusError(resp.status_code, f"{provider} returned status {resp.status_code}.")


async def iter_sse_data(resp: httpx.Response) -> AsyncIterator[dict[str, Any]]:
    """Decoded JSON payloads of `data:` lines; stops at `[DONE]`."""
    async for line in resp.aiter_lines():
        if not line or not line.startswith("data:"):
            continue
        raw = line[len("data:") :].strip()
        if not raw:
            continue
        if raw == "[DONE]":
            return
        try:
            event = json.loads(raw)
        except json.JSONDecodeError as e:
            raise UpstreamProtocolError("Failed to decode upstream SSE JSON.") from e
        if isinstance(event, dict):
            yield event


class HTTPProvider(Provider):
    """Shared plumbing for the HTTP backends: option state, transport and error mapping.

    Subclasses describe the wire format; the transport never retries, that is
    the job of the middleware stacked on top.
    """

    display_name = "HTTP"
    default_model = ""
    default_base_url = ""
    requires_api_key = True

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str | None = None,
        base_url: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.model = model or self.default_model
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    @property
    def name(self) -> str:
        return f"{self.display_name} ({self.model})"

    def configure(self, options: ProviderOptions) -> None:
        if options.api_key:
            self.api_key = options.api_key
        if options.base_url:
            self.base_url = options.base_url.rstrip("/")
        if options.model:
            self.model = options.model
        if options.max_tokens and options.max_tokens > 0:
            self.max_tokens = options.max_tokens
        if options.temperature:
            self.temperature = options.temperature
        if options.timeout_seconds and options.timeout_seconds > 0:
            self.timeout_seconds = options.timeout_seconds

    async def aclose(self) -> None:
        await self._client.aclose()

    def resolve_model(self, request: ChatRequest) -> str:
        return request.model or self.model

    def resolve_temperature(self, request: ChatRequest) -> float | None:
        return request.temperature if request.temperature is not None else self.temperature

    def resolve_max_tokens(self, request: ChatRequest) -> int | None:
        return request.max_tokens or self.max_tokens

    def _check_credentials(self) -> None:
        if self.requires_api_key and not self.api_key:
            raise AuthenticationError(f"Missing API key for {self.display_name}.")

    @abstractmethod
    def endpoint(self, model: str, *, stream: bool) -> tuple[str, dict[str, str]]:
        """URL and query params for a call."""

    def headers(self) -> dict[str, str]:
        return {}

    @abstractmethod
    def build_payload(self, request: ChatRequest, model: str, *, stream: bool) -> dict[str, Any]: ...

    @abstractmethod
    def parse_response(self, data: dict[str, Any], model: str) -> ChatResponse: ...

    @abstractmethod
    def decode_stream(self, resp: httpx.Response) -> AsyncIterator[StreamPacket]: ...

    async def generate(self, request: ChatRequest) -> ChatResponse:
        self._check_credentials()
        model = self.resolve_model(request)
        url, params = self.endpoint(model, stream=False)
        payload = self.build_payload(request, model, stream=False)
        try:
            resp = await self._client.post(
                url, params=params, json=payload, headers=self.headers(), timeout=self.timeout_seconds
            )
        except httpx.TimeoutException as e:
            raise ProviderDownError(f"{self.display_name} request timed out.") from e
        except httpx.HTTPError as e:
            raise ProviderDownError(f"{self.display_name} request failed: {e}") from e

        if resp.status_code >= 500:
            log.warning("upstream_5xx", provider=self.display_name, status_code=resp.status_code, body=resp.text[:500])
        raise_for_upstream_status(resp, provider=self.display_name)

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamProtocolError(f"{self.display_name} returned a non-JSON body.") from e
        if not isinstance(data, dict):
            raise UpstreamProtocolError(f"{self.display_name} returned an unexpected body.")

        response = self.parse_response(data, model)
        log.debug(
            "provider_generate_ok",
            provider=self.display_name,
            model=model,
            prompt_chars=sum(len(m.text_content()) for m in request.messages),
        )
        return response

    async def generate_stream(self, request: ChatRequest) -> PacketStream:
        self._check_credentials()
        model = self.resolve_model(request)
        url, params = self.endpoint(model, stream=True)
        payload = self.build_payload(request, model, stream=True)
        http_request = self._client.build_request(
            "POST", url, params=params, json=payload, headers=self.headers(), timeout=self.timeout_seconds
        )
        try:
            resp = await self._client.send(http_request, stream=True)
        except httpx.TimeoutException as e:
            raise ProviderDownError(f"{self.display_name} stream request timed out.") from e
        except httpx.HTTPError as e:
            raise ProviderDownError(f"{self.display_name} stream request failed: {e}") from e

        if resp.status_code >= 400:
            await resp.aclose()
            raise_for_upstream_status(resp, provider=self.display_name)
        return self._packets(resp, model)

    async def _packets(self, resp: httpx.Response, model: str) -> AsyncIterator[StreamPacket]:
        try:
            async for packet in self.decode_stream(resp):
                if packet.usage is not None and not packet.model:
                    packet = dataclasses.replace(packet, model=model)
                yield packet
        except UpstreamProtocolError as e:
            yield StreamPacket(error=e)
        except httpx.HTTPError as e:
            yield StreamPacket(error=ProviderDownError(f"{self.display_name} stream interrupted: {e}"))
        finally:
            await resp.aclose()


__all__ = ["DEFAULT_TIMEOUT_SECONDS", "HTTPProvider", "iter_sse_data", "raise_for_upstream_status"]
