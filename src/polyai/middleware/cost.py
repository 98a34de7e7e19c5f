"""Per-call cost annotation from a per-model price table."""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType

from ..provider import PacketStream, Provider, ProviderMiddleware, close_stream
from ..types import ChatRequest, ChatResponse, StreamPacket, TokenUsage

_PER_MILLION = 1_000_000


@dataclass(frozen=True)
class ModelPrice:
    """USD per one million tokens."""

    input_price: float
    output_price: float

    def cost(self, usage: TokenUsage) -> float:
        return (usage.input_tokens / _PER_MILLION) * self.input_price + (
            usage.output_tokens / _PER_MILLION
        ) * self.output_price


@dataclass(frozen=True)
class PricingTable:
    prices: Mapping[str, ModelPrice] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "prices", MappingProxyType(dict(self.prices)))

    def lookup(self, model: str) -> ModelPrice | None:
        """Exact key first, then the longest key contained in `model` (ties: alphabetical)."""
        if not model:
            return None
        exact = self.prices.get(model)
        if exact is not None:
            return exact
        candidates = [key for key in self.prices if key and key in model]
        if not candidates:
            return None
        best = min(candidates, key=lambda key: (-len(key), key))
        return self.prices[best]


DEFAULT_PRICING = PricingTable(
    {
        # OpenAI
        "gpt-4o": ModelPrice(5.00, 15.00),
        "gpt-4o-mini": ModelPrice(0.15, 0.60),
        "gpt-4-turbo": ModelPrice(10.00, 30.00),
        "gpt-3.5-turbo": ModelPrice(0.50, 1.50),
        # Anthropic
        "claude-3-5-sonnet": ModelPrice(3.00, 15.00),
        "claude-3-opus": ModelPrice(15.00, 75.00),
        # Google
        "gemini-1.5-pro": ModelPrice(3.50, 10.50),
        "gemini-1.5-flash": ModelPrice(0.35, 1.05),
        # Local
        "tinyllama": ModelPrice(0.0, 0.0),
        "llama3": ModelPrice(0.0, 0.0),
    }
)


class CostEstimator(ProviderMiddleware):
    def __init__(self, provider: Provider, pricing: PricingTable | None = None):
        super().__init__(provider)
        self._pricing = pricing or DEFAULT_PRICING

    @property
    def pricing(self) -> PricingTable:
        return self._pricing

    def set_pricing(self, pricing: PricingTable) -> None:
        # Whole-table swap; calls in flight keep the table they started with.
        self._pricing = pricing

    async def generate(self, request: ChatRequest) -> ChatResponse:
        pricing = self._pricing
        response = await self._next.generate(request)
        price = pricing.lookup(request.model or response.model or "")
        if price is None:
            return response
        return response.model_copy(update={"usage": response.usage.with_cost(price.cost(response.usage))})

    async def generate_stream(self, request: ChatRequest) -> PacketStream:
        source = await self._next.generate_stream(request)
        return self._priced(source, request.model)

    async def _priced(self, source: PacketStream, model: str) -> AsyncIterator[StreamPacket]:
        try:
            async for packet in source:
                if packet.usage is not None:
                    price = self._pricing.lookup(model or packet.model or "")
                    if price is not None:
                        packet = replace(packet, usage=packet.usage.with_cost(price.cost(packet.usage)))
                yield packet
        finally:
            await close_stream(source)


__all__ = ["CostEstimator", "DEFAULT_PRICING", "ModelPrice", "PricingTable"]
