"""Anthropic Claude chat client.

Claude takes the system prompt as a top-level ``system=`` argument and expects
user/assistant turns to alternate, so messages are reshaped before each call.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from dataclasses import replace
from typing import TypeVar

import anthropic
from anthropic import AsyncAnthropic
from pydantic import BaseModel

from fin_crag.exceptions import (
    AuthenticationError,
    LLMClientError,
    LLMTimeoutError,
    ModelNotFoundError,
    RateLimitError,
)
from fin_crag.generation.structured import parse_structured
from fin_crag.models.llm import ChatMessage, ChatOptions, ChatResponse, StreamChunk, TokenUsage
from fin_crag.observability.logger import get_logger

logger = get_logger("anthropic")

T = TypeVar("T", bound=BaseModel)

JSON_INSTRUCTION = "Respond with a single valid JSON object and nothing else."


def split_system(messages: list[ChatMessage]) -> tuple[str | None, list[ChatMessage]]:
    """Pull system prompts out and merge consecutive same-role turns."""
    system_parts: list[str] = []
    turns: list[ChatMessage] = []
    for message in messages:
        role, content = message["role"], message["content"]
        if role == "system":
            system_parts.append(content)
            continue
        if turns and turns[-1]["role"] == role:
            turns[-1] = {"role": role, "content": f"{turns[-1]['content']}\n\n{content}"}
        else:
            turns.append({"role": role, "content": content})
    return ("\n\n".join(system_parts) or None), turns


def translate_error(error: Exception, provider: str, model: str) -> LLMClientError:
    if isinstance(error, LLMClientError):
        return error
    if isinstance(error, anthropic.AuthenticationError):
        return AuthenticationError(provider)
    if isinstance(error, anthropic.RateLimitError):
        value = error.response.headers.get("retry-after") if error.response is not None else None
        retry_ms = int(float(value) * 1000) if value and value.replace(".", "", 1).isdigit() else None
        return RateLimitError(provider, retry_after_ms=retry_ms)
    if isinstance(error, anthropic.NotFoundError):
        return ModelNotFoundError(provider, model)
    if isinstance(error, anthropic.APITimeoutError):
        return LLMTimeoutError(provider)
    if isinstance(error, anthropic.APIStatusError):
        return LLMClientError(
            str(error),
            code=f"http_{error.status_code}",
            provider=provider,
            retryable=error.status_code >= 500,
        )
    if isinstance(error, anthropic.APIConnectionError):
        return LLMClientError(str(error), code="connection_error", provider=provider, retryable=True)
    return LLMClientError(str(error) or type(error).__name__, provider=provider)


class AnthropicClient:
    provider = "anthropic"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-3-5-haiku-latest",
        timeout_s: float = 30.0,
        client=None,
    ) -> None:
        self._client = client or AsyncAnthropic(api_key=api_key, timeout=timeout_s)
        self.model_name = model

    def _request(self, messages: list[ChatMessage], options: ChatOptions) -> dict:
        system, turns = split_system(messages)
        if options.response_format == "json":
            system = f"{system}\n\n{JSON_INSTRUCTION}" if system else JSON_INSTRUCTION
        kwargs: dict = {
            "model": self.model_name,
            "messages": turns,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        }
        if system:
            kwargs["system"] = system
        if options.top_p is not None:
            kwargs["top_p"] = options.top_p
        if options.stop:
            kwargs["stop_sequences"] = options.stop
        return kwargs

    async def chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> ChatResponse:
        opts = options or ChatOptions()
        start = time.monotonic()
        try:
            response = await self._client.messages.create(**self._request(messages, opts))
        except Exception as e:
            raise translate_error(e, self.provider, self.model_name) from e

        content = "".join(block.text for block in response.content if block.type == "text")
        usage = response.usage
        return ChatResponse(
            content=content,
            finish_reason=response.stop_reason or "stop",
            usage=TokenUsage(
                prompt_tokens=usage.input_tokens,
                completion_tokens=usage.output_tokens,
                total_tokens=usage.input_tokens + usage.output_tokens,
            ),
            model=response.model or self.model_name,
            latency_ms=round((time.monotonic() - start) * 1000, 2),
        )

    async def chat_structured(
        self,
        messages: list[ChatMessage],
        schema: type[T],
        options: ChatOptions | None = None,
    ) -> T:
        response = await self.chat(messages, replace(options or ChatOptions(), response_format="json"))
        return parse_structured(response.content, schema)

    async def chat_stream(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> AsyncIterator[StreamChunk]:
        opts = options or ChatOptions()
        try:
            async with self._client.messages.stream(**self._request(messages, opts)) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield StreamChunk(content=text)
                final = await stream.get_final_message()
        except Exception as e:
            raise translate_error(e, self.provider, self.model_name) from e
        yield StreamChunk(
            content="",
            done=True,
            usage=TokenUsage(
                prompt_tokens=final.usage.input_tokens,
                completion_tokens=final.usage.output_tokens,
                total_tokens=final.usage.input_tokens + final.usage.output_tokens,
            ),
        )

    async def test_connection(self) -> bool:
        try:
            response = await self.chat(
                [{"role": "user", "content": 'Say "OK" to confirm connection.'}],
                ChatOptions(temperature=0.0, max_tokens=10),
            )
        except LLMClientError as e:
            logger.warning("connection_test_failed", provider=self.provider, error=str(e))
            return False
        return bool(response.content)
