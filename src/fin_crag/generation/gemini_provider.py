"""Google Gemini chat client using the google-genai SDK."""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from dataclasses import replace
from typing import TypeVar

from google import genai
from google.genai import errors, types
from pydantic import BaseModel

from fin_crag.exceptions import (
    AuthenticationError,
    ContentFilterError,
    LLMClientError,
    ModelNotFoundError,
    RateLimitError,
)
from fin_crag.generation.structured import parse_structured
from fin_crag.models.llm import ChatMessage, ChatOptions, ChatResponse, StreamChunk, TokenUsage
from fin_crag.observability.logger import get_logger

logger = get_logger("gemini")

T = TypeVar("T", bound=BaseModel)


def to_contents(messages: list[ChatMessage]) -> tuple[str | None, list[types.Content]]:
    system_parts: list[str] = []
    contents: list[types.Content] = []
    for message in messages:
        if message["role"] == "system":
            system_parts.append(message["content"])
            continue
        role = "model" if message["role"] == "assistant" else "user"
        contents.append(types.Content(role=role, parts=[types.Part(text=message["content"])]))
    return ("\n\n".join(system_parts) or None), contents


def translate_error(error: Exception, provider: str, model: str) -> LLMClientError:
    if isinstance(error, LLMClientError):
        return error
    if isinstance(error, errors.APIError):
        code = error.code or 0
        if code in (401, 403):
            return AuthenticationError(provider)
        if code == 429:
            return RateLimitError(provider)
        if code == 404:
            return ModelNotFoundError(provider, model)
        return LLMClientError(str(error), code=f"http_{code}", provider=provider, retryable=code >= 500)
    return LLMClientError(str(error) or type(error).__name__, provider=provider)


class GeminiClient:
    provider = "gemini"

    def __init__(self, api_key: str | None = None, model: str = "gemini-2.0-flash", client=None) -> None:
        self._client = client or genai.Client(api_key=api_key)
        self.model_name = model

    def _config(self, system: str | None, options: ChatOptions) -> types.GenerateContentConfig:
        config = types.GenerateContentConfig(
            temperature=options.temperature,
            max_output_tokens=options.max_tokens,
        )
        if system:
            config.system_instruction = system
        if options.top_p is not None:
            config.top_p = options.top_p
        if options.stop:
            config.stop_sequences = options.stop
        if options.response_format == "json":
            config.response_mime_type = "application/json"
        return config

    async def chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> ChatResponse:
        opts = options or ChatOptions()
        system, contents = to_contents(messages)
        start = time.monotonic()
        try:
            response = await self._client.aio.models.generate_content(
                model=self.model_name,
                contents=contents,
                config=self._config(system, opts),
            )
        except Exception as e:
            raise translate_error(e, self.provider, self.model_name) from e

        finish = ""
        if response.candidates:
            reason = response.candidates[0].finish_reason
            finish = str(getattr(reason, "value", reason) or "").lower()
        if finish == "safety":
            raise ContentFilterError(self.provider)

        meta = response.usage_metadata
        prompt_tokens = (meta.prompt_token_count or 0) if meta else 0
        completion_tokens = (meta.candidates_token_count or 0) if meta else 0
        return ChatResponse(
            content=response.text or "",
            finish_reason=finish or "stop",
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            model=self.model_name,
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
        system, contents = to_contents(messages)
        try:
            stream = await self._client.aio.models.generate_content_stream(
                model=self.model_name,
                contents=contents,
                config=self._config(system, opts),
            )
            async for chunk in stream:
                if chunk.text:
                    yield StreamChunk(content=chunk.text)
        except Exception as e:
            raise translate_error(e, self.provider, self.model_name) from e
        yield StreamChunk(content="", done=True)

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
