from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import TypeAlias

from .types import ChatRequest, ChatResponse, ProviderOptions, StreamPacket

PacketStream: TypeAlias = AsyncIterator[StreamPacket]


class Provider(ABC):
    """Chat-completion capability implemented by every backend and every middleware.

    `generate_stream` is awaited to open the stream: setup failures raise from
    the await, failures after the first packet arrive as error packets.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def configure(self, options: ProviderOptions) -> None: ...

    @abstractmethod
    async def generate(self, request: ChatRequest) -> ChatResponse: ...

    @abstractmethod
    async def generate_stream(self, request: ChatRequest) -> PacketStream: ...

    async def aclose(self) -> None:
        return None


class ProviderMiddleware(Provider):
    """Forwards everything to the wrapped provider; subclasses override what they change."""

    def __init__(self, provider: Provider):
        self._next = provider

    @property
    def wrapped(self) -> Provider:
        return self._next

    @property
    def name(self) -> str:
        return self._next.name

    def configure(self, options: ProviderOptions) -> None:
        self._next.configure(options)

    async def generate(self, request: ChatRequest) -> ChatResponse:
        return await self._next.generate(request)

    async def generate_stream(self, request: ChatRequest) -> PacketStream:
        return await self._next.generate_stream(request)

    async def aclose(self) -> None:
        await self._next.aclose()


async def close_stream(stream: PacketStream) -> None:
    aclose = getattr(stream, "aclose", None)
    if callable(aclose):
        await aclose()


__all__ = ["PacketStream", "Provider", "ProviderMiddleware", "close_stream"]
