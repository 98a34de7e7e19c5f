from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx

from ..errors import UpstreamProtocolError
from ..types import ChatRequest, ChatResponse, StreamPacket, TokenUsage
from .base import HTTPProvider, iter_sse_data

GEMINI_DEV_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


def _usage(data: dict[str, Any]) -> TokenUsage | None:
    meta = data.get("usageMetadata")
    if not isinstance(meta, dict):
        return None
    return TokenUsage(
        input_tokens=int(meta.get("promptTokenCount") or 0),
        output_tokens=int(meta.get("candidatesTokenCount") or 0),
    )


def _candidate_text(data: dict[str, Any]) -> str | None:
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return None
    content = candidates[0].get("content")
    if not isinstance(content, dict):
        return None
    parts = content.get("parts")
    if not isinstance(parts, list) or not parts:
        return None
    texts = [p.get("text") for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
    return "".join(texts) if texts else None


class GoogleProvider(HTTPProvider):
    """Gemini Developer API (api key auth).

    System messages are lifted into `systemInstruction`; the assistant role is
    sent as `model`.
    """

    display_name = "Google Gemini"
    default_model = "gemini-1.5-flash"
    default_base_url = GEMINI_DEV_API_BASE

    def endpoint(self, model: str, *, stream: bool) -> tuple[str, dict[str, str]]:
        params = {"key": self.api_key or ""}
        if stream:
            params["alt"] = "sse"
            return f"{self.base_url}/models/{model}:streamGenerateContent", params
        return f"{self.base_url}/models/{model}:generateContent", params

    def build_payload(self, request: ChatRequest, model: str, *, stream: bool) -> dict[str, Any]:
        contents: list[dict[str, Any]] = []
        system_parts: list[dict[str, str]] = []
        for msg in request.messages:
            text = msg.text_content()
            if msg.role == "system":
                system_parts.append({"text": text})
                continue
            if msg.role == "user":
                gemini_role = "user"
            elif msg.role == "assistant":
                gemini_role = "model"
            else:
                raise UpstreamProtocolError(f"Unsupported message role for upstream: {msg.role!r}")
            contents.append({"role": gemini_role, "parts": [{"text": text}]})

        payload: dict[str, Any] = {"contents": contents}
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}

        generation_config: dict[str, Any] = {}
        temperature = self.resolve_temperature(request)
        if temperature is not None:
            generation_config["temperature"] = temperature
        max_tokens = self.resolve_max_tokens(request)
        if max_tokens:
            generation_config["maxOutputTokens"] = max_tokens
        if request.json_mode:
            generation_config["responseMimeType"] = "application/json"
        if generation_config:
            payload["generationConfig"] = generation_config
        return payload

    def parse_response(self, data: dict[str, Any], model: str) -> ChatResponse:
        text = _candidate_text(data)
        if text is None:
            raise UpstreamProtocolError("Missing candidate text in upstream response.")
        return ChatResponse(
            content=text,
            usage=_usage(data) or TokenUsage(),
            model=data.get("modelVersion") or model,
        )

    async def decode_stream(self, resp: httpx.Response) -> AsyncIterator[StreamPacket]:
        usage: TokenUsage | None = None
        async for event in iter_sse_data(resp):
            text = _candidate_text(event)
            if text:
                yield StreamPacket(chunk=text)
            # every event carries cumulative usage; only the last one is final
            usage = _usage(event) or usage
        if usage is not None:
            yield StreamPacket(usage=usage)


__all__ = ["GEMINI_DEV_API_BASE", "GoogleProvider"]
