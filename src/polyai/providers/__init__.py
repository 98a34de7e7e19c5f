"""Backend adapters and the `create_provider` factory."""

from __future__ import annotations

import httpx

from ..errors import ConfigurationError
from ..provider import Provider
from ..types import ProviderOptions
from .anthropic import AnthropicProvider
from .base import HTTPProvider
from .google import GoogleProvider
from .mock import MockProvider
from .ollama import OllamaProvider
from .openai import OpenAIProvider

PROVIDERS: dict[str, type[HTTPProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "google": GoogleProvider,
    "gemini": GoogleProvider,
    "ollama": OllamaProvider,
}


def create_provider(
    name: str,
    options: ProviderOptions | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> Provider:
    key = name.strip().lower()
    if key == "mock":
        provider: Provider = MockProvider()
    else:
        cls = PROVIDERS.get(key)
        if cls is None:
            raise ConfigurationError(f"Unknown provider {name!r}; expected one of: mock, {', '.join(sorted(PROVIDERS))}")
        provider = cls(client=client)
    if options is not None:
        provider.configure(options)
    return provider


__all__ = [
    "AnthropicProvider",
    "GoogleProvider",
    "HTTPProvider",
    "MockProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "PROVIDERS",
    "create_provider",
]
