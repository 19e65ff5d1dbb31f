"""Protocol for LLM clients."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol, TypeVar

from pydantic import BaseModel

from fin_crag.models.llm import ChatMessage, ChatOptions, ChatResponse, StreamChunk

T = TypeVar("T", bound=BaseModel)


class LLMClient(Protocol):
    provider: str
    model_name: str

    async def chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> ChatResponse: ...

    async def chat_structured(
        self,
        messages: list[ChatMessage],
        schema: type[T],
        options: ChatOptions | None = None,
    ) -> T: ...

    def chat_stream(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> AsyncIterator[StreamChunk]: ...

    async def test_connection(self) -> bool: ...
