from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx

from ..errors import UpstreamProtocolError
from ..types import ChatMessage, ChatRequest, ChatResponse, StreamPacket, TokenUsage
from .base import HTTPProvider, iter_sse_data

OPENAI_API_BASE = "https://api.openai.com/v1"


def _message(msg: ChatMessage) -> dict[str, Any]:
    images = msg.image_urls()
    if not images:
        return {"role": msg.role, "content": msg.text_content()}
    parts: list[dict[str, Any]] = []
    for part in msg.content:
        if part.type == "text" and part.text:
            parts.append({"type": "text", "text": part.text})
        elif part.type == "image_url" and part.image_url:
            parts.append({"type": "image_url", "image_url": {"url": part.image_url}})
    return {"role": msg.role, "content": parts}


def _usage(data: dict[str, Any]) -> TokenUsage | None:
    usage = data.get("usage")
    if not isinstance(usage, dict):
        return None
    return TokenUsage(
        input_tokens=int(usage.get("prompt_tokens") or 0),
        output_tokens=int(usage.get("completion_tokens") or 0),
    )


class OpenAIProvider(HTTPProvider):
    """Chat Completions API; also works against OpenAI-compatible servers via `base_url`."""

    display_name = "OpenAI"
    default_model = "gpt-4o-mini"
    default_base_url = OPENAI_API_BASE

    def endpoint(self, model: str, *, stream: bool) -> tuple[str, dict[str, str]]:
        return f"{self.base_url}/chat/completions", {}

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def build_payload(self, request: ChatRequest, model: str, *, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [_message(m) for m in request.messages],
        }
        temperature = self.resolve_temperature(request)
        if temperature is not None:
            payload["temperature"] = temperature
        max_tokens = self.resolve_max_tokens(request)
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if request.json_mode:
            payload["response_format"] = {"type": "json_object"}
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        return payload

    def parse_response(self, data: dict[str, Any], model: str) -> ChatResponse:
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise UpstreamProtocolError("Missing choices in upstream response.")
        message = choices[0].get("message")
        if not isinstance(message, dict):
            raise UpstreamProtocolError("Missing message in upstream response.")
        content = message.get("content")
        if not isinstance(content, str):
            raise UpstreamProtocolError("Missing content in upstream response.")
        return ChatResponse(content=content, usage=_usage(data) or TokenUsage(), model=data.get("model") or model)

    async def decode_stream(self, resp: httpx.Response) -> AsyncIterator[StreamPacket]:
        async for event in iter_sse_data(resp):
            choices = event.get("choices")
            if isinstance(choices, list) and choices:
                delta = choices[0].get("delta") or {}
                text = delta.get("content")
                if isinstance(text, str) and text:
                    yield StreamPacket(chunk=text)
            usage = _usage(event)
            if usage is not None:
                yield StreamPacket(usage=usage)


__all__ = ["OPENAI_API_BASE", "OpenAIProvider"]
