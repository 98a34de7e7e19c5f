from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx

from ..errors import UpstreamProtocolError
from ..types import ChatRequest, ChatResponse, StreamPacket, TokenUsage
from .base import HTTPProvider

OLLAMA_BASE = "http://localhost:11434"


def _usage(data: dict[str, Any]) -> TokenUsage:
    return TokenUsage(
        input_tokens=int(data.get("prompt_eval_count") or 0),
        output_tokens=int(data.get("eval_count") or 0),
    )


class OllamaProvider(HTTPProvider):
    """Local Ollama server. Streams newline-delimited JSON rather than SSE."""

    display_name = "Ollama"
    default_model = "llama3"
    default_base_url = OLLAMA_BASE
    requires_api_key = False

    def endpoint(self, model: str, *, stream: bool) -> tuple[str, dict[str, str]]:
        return f"{self.base_url}/api/chat", {}

    def build_payload(self, request: ChatRequest, model: str, *, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.text_content()} for m in request.messages],
            "stream": stream,
        }
        options: dict[str, Any] = {}
        temperature = self.resolve_temperature(request)
        if temperature is not None:
            options["temperature"] = temperature
        max_tokens = self.resolve_max_tokens(request)
        if max_tokens:
            options["num_predict"] = max_tokens
        if options:
            payload["options"] = options
        if request.json_mode:
            payload["format"] = "json"
        return payload

    def parse_response(self, data: dict[str, Any], model: str) -> ChatResponse:
        message = data.get("message")
        if not isinstance(message, dict) or not isinstance(message.get("content"), str):
            raise UpstreamProtocolError("Missing message content in upstream response.")
        return ChatResponse(content=message["content"], usage=_usage(data), model=data.get("model") or model)

    async def decode_stream(self, resp: httpx.Response) -> AsyncIterator[StreamPacket]:
        async for line in resp.aiter_lines():
            if not line.strip():
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError as e:
                raise UpstreamProtocolError("Failed to decode upstream NDJSON line.") from e
            if event.get("error"):
                raise UpstreamProtocolError(f"Ollama stream error: {event['error']}")
            text = (event.get("message") or {}).get("content")
            if isinstance(text, str) and text:
                yield StreamPacket(chunk=text)
            if event.get("done"):
                yield StreamPacket(usage=_usage(event))
                return


__all__ = ["OLLAMA_BASE", "OllamaProvider"]
