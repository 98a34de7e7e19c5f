from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx

from ..errors import UpstreamProtocolError
from ..types import ChatRequest, ChatResponse, StreamPacket, TokenUsage
from .base import HTTPProvider, iter_sse_data

ANTHROPIC_API_BASE = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"
# the Messages API rejects requests without max_tokens
DEFAULT_MAX_TOKENS = 1024


class AnthropicProvider(HTTPProvider):
    display_name = "Anthropic"
    default_model = "claude-3-5-sonnet-20240620"
    default_base_url = ANTHROPIC_API_BASE

    def endpoint(self, model: str, *, stream: bool) -> tuple[str, dict[str, str]]:
        return f"{self.base_url}/messages", {}

    def headers(self) -> dict[str, str]:
        return {"x-api-key": self.api_key or "", "anthropic-version": ANTHROPIC_VERSION}

    def build_payload(self, request: ChatRequest, model: str, *, stream: bool) -> dict[str, Any]:
        system: list[str] = []
        messages: list[dict[str, Any]] = []
        for msg in request.messages:
            if msg.role == "system":
                system.append(msg.text_content())
                continue
            messages.append({"role": msg.role, "content": msg.text_content()})

        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": self.resolve_max_tokens(request) or DEFAULT_MAX_TOKENS,
        }
        if system:
            payload["system"] = "\n\n".join(system)
        temperature = self.resolve_temperature(request)
        if temperature is not None:
            payload["temperature"] = temperature
        if stream:
            payload["stream"] = True
        return payload

    def parse_response(self, data: dict[str, Any], model: str) -> ChatResponse:
        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise UpstreamProtocolError("Missing content in upstream response.")
        text = "".join(
            b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text"
        )
        usage = data.get("usage") or {}
        return ChatResponse(
            content=text,
            usage=TokenUsage(
                input_tokens=int(usage.get("input_tokens") or 0),
                output_tokens=int(usage.get("output_tokens") or 0),
            ),
            model=data.get("model") or model,
        )

    async def decode_stream(self, resp: httpx.Response) -> AsyncIterator[StreamPacket]:
        input_tokens = 0
        async for event in iter_sse_data(resp):
            kind = event.get("type")
            if kind == "message_start":
                usage = (event.get("message") or {}).get("usage") or {}
                input_tokens = int(usage.get("input_tokens") or 0)
            elif kind == "content_block_delta":
                delta = event.get("delta") or {}
                text = delta.get("text")
                if isinstance(text, str) and text:
                    yield StreamPacket(chunk=text)
            elif kind == "message_delta":
                usage = event.get("usage") or {}
                yield StreamPacket(
                    usage=TokenUsage(input_tokens=input_tokens, output_tokens=int(usage.get("output_tokens") or 0))
                )
            elif kind == "error":
                detail = (event.get("error") or {}).get("message", "unknown error")
                raise UpstreamProtocolError(f"Anthropic stream error: {detail}")


__all__ = ["ANTHROPIC_API_BASE", "ANTHROPIC_VERSION", "AnthropicProvider"]
