"""Provider-agnostic LLM client with composable reliability middleware."""

from .errors import ProviderError
from .fallback import FallbackClient
from .pipeline import build_pipeline, compose
from .provider import Provider, ProviderMiddleware
from .providers import create_provider
from .structured import generate_structured
from .types import ChatMessage, ChatRequest, ChatResponse, ContentPart, ProviderOptions, StreamPacket, TokenUsage

__version__ = "0.1.0"

__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ContentPart",
    "FallbackClient",
    "Provider",
    "ProviderError",
    "ProviderMiddleware",
    "ProviderOptions",
    "StreamPacket",
    "TokenUsage",
    "build_pipeline",
    "compose",
    "create_provider",
    "generate_structured",
]
