"""Value types shared by providers and middleware.

Requests and responses are frozen pydantic models: a middleware that needs a
different value builds a copy instead of mutating what it was handed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ContentPart(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text", "image_url"] = "text"
    text: str | None = None
    image_url: str | None = None


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str
    content: tuple[ContentPart, ...] = ()

    @classmethod
    def from_text(cls, role: str, text: str) -> "ChatMessage":
        return cls(role=role, content=(ContentPart(type="text", text=text),))

    def text_content(self) -> str:
        return "".join(part.text or "" for part in self.content if part.type == "text")

    def image_urls(self) -> list[str]:
        return [part.image_url for part in self.content if part.type == "image_url" and part.image_url]


class ChatRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    messages: tuple[ChatMessage, ...]
    model: str = ""
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool = False
    json_mode: bool = False
    trace_id: str | None = None

    def with_leading_message(self, message: ChatMessage) -> "ChatRequest":
        return self.model_copy(update={"messages": (message, *self.messages)})

    def summary(self) -> str:
        """One line per message, used for payload logging."""
        lines: list[str] = []
        for msg in self.messages:
            line = f"{msg.role}: {msg.text_content()}"
            images = msg.image_urls()
            if images:
                line += " " + " ".join(f"[image: {url}]" for url in images)
            lines.append(line)
        return "\n".join(lines)


class TokenUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def _compute_total(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            data["total_tokens"] = int(data.get("input_tokens") or 0) + int(data.get("output_tokens") or 0)
        return data

    def with_cost(self, cost_usd: float) -> "TokenUsage":
        return self.model_copy(update={"cost_usd": cost_usd})


class ChatResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cached: bool = False
    model: str | None = None


@dataclass(frozen=True)
class StreamPacket:
    """One element of a streamed completion: a text chunk, the usage record or an error.

    The usage packet also names the model that served the stream, when known.
    """

    chunk: str = ""
    usage: TokenUsage | None = None
    error: BaseException | None = None
    model: str | None = None


class ProviderOptions(BaseModel):
    """Options accepted by Provider.configure. Unset / zero / empty fields keep the current value."""

    api_key: str | None = None
    base_url: str | None = None
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    timeout_seconds: float | None = None


__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ContentPart",
    "ProviderOptions",
    "StreamPacket",
    "TokenUsage",
]
