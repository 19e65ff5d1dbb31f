"""Per-request LLM call accounting: stage budgets, timeouts, cancellation and token totals."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Mapping
from dataclasses import replace
from typing import TypeVar

from pydantic import BaseModel

from fin_crag.exceptions import LLMBudgetExceeded, LLMClientError, LLMTimeoutError
from fin_crag.generation.structured import parse_structured
from fin_crag.models.llm import ChatMessage, ChatOptions, ChatResponse, StreamChunk
from fin_crag.observability.logger import get_logger

logger = get_logger("metering")

T = TypeVar("T", bound=BaseModel)
R = TypeVar("R")

DEFAULT_STAGE_LIMITS: dict[str, int] = {
    "grading": 0,
    "rewrite": 1,
    "generate": 1,
    "check": 1,
    "regenerate": 1,
    "recheck": 1,
}


class LLMCallMeter:
    """Created once per request; hands out stage-scoped clients that share its counters."""

    def __init__(
        self,
        llm,
        limits: Mapping[str, int] | None = None,
        timeout_s: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self._llm = llm
        self._limits = dict(DEFAULT_STAGE_LIMITS if limits is None else limits)
        self._used: dict[str, int] = {}
        self.timeout_s = timeout_s
        self.cancel_event = cancel_event
        self.calls = 0
        self.tokens = 0
        self.error: str | None = None

    @property
    def provider(self) -> str:
        return getattr(self._llm, "provider", "unknown")

    def set_limit(self, stage: str, limit: int) -> None:
        self._limits[stage] = max(0, limit)

    def used(self, stage: str) -> int:
        return self._used.get(stage, 0)

    def stage(self, name: str) -> MeteredClient:
        return MeteredClient(self, name)

    def acquire(self, stage: str) -> None:
        limit = self._limits.get(stage, 0)
        if self._used.get(stage, 0) >= limit:
            raise LLMBudgetExceeded(stage, limit)
        self._used[stage] = self._used.get(stage, 0) + 1
        self.calls += 1

    def record_tokens(self, count: int) -> None:
        self.tokens += max(0, count)

    def record_error(self, error: Exception) -> None:
        if self.error is not None:
            return
        if isinstance(error, LLMClientError) and not error.retryable:
            self.error = f"{error.code}: {error}"
            logger.warning("llm_fatal_error", provider=error.provider, code=error.code)

    async def guarded(self, awaitable: Awaitable[R]) -> R:
        """Await ``awaitable`` under the per-call timeout and the request's cancel event."""
        try:
            return await asyncio.wait_for(self._race_cancel(awaitable), timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            raise LLMTimeoutError(self.provider) from e

    async def _race_cancel(self, awaitable: Awaitable[R]) -> R:
        if self.cancel_event is None:
            return await awaitable
        if self.cancel_event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise LLMTimeoutError(self.provider, "LLM call cancelled")

        call = asyncio.ensure_future(awaitable)
        cancelled = asyncio.ensure_future(self.cancel_event.wait())
        try:
            await asyncio.wait({call, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (call, cancelled):
                if not task.done():
                    task.cancel()
        if call.done() and not call.cancelled():
            return call.result()
        raise LLMTimeoutError(self.provider, "LLM call cancelled")


class MeteredClient:
    """LLM client facade bound to one pipeline stage."""

    def __init__(self, meter: LLMCallMeter, stage: str) -> None:
        self._meter = meter
        self._stage = stage

    @property
    def provider(self) -> str:
        return self._meter.provider

    @property
    def model_name(self) -> str:
        return getattr(self._meter._llm, "model_name", "")

    async def chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> ChatResponse:
        self._meter.acquire(self._stage)
        try:
            response = await self._meter.guarded(self._meter._llm.chat(messages, options))
        except Exception as e:
            self._meter.record_error(e)
            raise
        self._meter.record_tokens(response.usage.total_tokens)
        return response

    async def chat_structured(
        self,
        messages: list[ChatMessage],
        schema: type[T],
        options: ChatOptions | None = None,
    ) -> T:
        # Routed through chat() so tokens are counted.
        response = await self.chat(messages, replace(options or ChatOptions(), response_format="json"))
        return parse_structured(response.content, schema)

    async def chat_stream(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> AsyncIterator[StreamChunk]:
        self._meter.acquire(self._stage)
        try:
            async for chunk in self._meter._llm.chat_stream(messages, options):
                if chunk.usage is not None:
                    self._meter.record_tokens(chunk.usage.total_tokens)
                yield chunk
        except Exception as e:
            self._meter.record_error(e)
            raise

    async def test_connection(self) -> bool:
        return await self._meter._llm.test_connection()
