from __future__ import annotations

import uuid

import structlog

from ..provider import PacketStream, ProviderMiddleware
from ..types import ChatRequest, ChatResponse


def new_trace_id() -> str:
    return uuid.uuid4().hex


def ensure_trace_id(request: ChatRequest) -> ChatRequest:
    if request.trace_id:
        return request
    return request.model_copy(update={"trace_id": new_trace_id()})


class TracingMiddleware(ProviderMiddleware):
    """Guarantees every downstream call carries a trace id, generating one if absent."""

    async def generate(self, request: ChatRequest) -> ChatResponse:
        request = ensure_trace_id(request)
        with structlog.contextvars.bound_contextvars(trace_id=request.trace_id):
            return await self._next.generate(request)

    async def generate_stream(self, request: ChatRequest) -> PacketStream:
        request = ensure_trace_id(request)
        with structlog.contextvars.bound_contextvars(trace_id=request.trace_id):
            return await self._next.generate_stream(request)


__all__ = ["TracingMiddleware", "ensure_trace_id", "new_trace_id"]
