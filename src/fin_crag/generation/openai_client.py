"""OpenAI and Azure OpenAI chat clients."""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from dataclasses import replace
from typing import TypeVar

import openai
from openai import AsyncAzureOpenAI, AsyncOpenAI
from pydantic import BaseModel

from fin_crag.exceptions import (
    AuthenticationError,
    ContentFilterError,
    LLMClientError,
    LLMTimeoutError,
    ModelNotFoundError,
    RateLimitError,
)
from fin_crag.generation.structured import parse_structured
from fin_crag.models.llm import ChatMessage, ChatOptions, ChatResponse, StreamChunk, TokenUsage
from fin_crag.observability.logger import get_logger

logger = get_logger("openai")

T = TypeVar("T", bound=BaseModel)

CONNECTION_TEST_PROMPT = 'Say "OK" to confirm connection.'


def _retry_after_ms(error: openai.APIStatusError) -> int | None:
    headers = getattr(error.response, "headers", None) or {}
    value = headers.get("retry-after")
    try:
        return int(float(value) * 1000) if value is not None else None
    except ValueError:
        return None


def translate_error(error: Exception, provider: str, model: str) -> LLMClientError:
    """Map an OpenAI SDK exception onto the client error hierarchy."""
    if isinstance(error, LLMClientError):
        return error
    if isinstance(error, openai.AuthenticationError):
        return AuthenticationError(provider)
    if isinstance(error, openai.RateLimitError):
        return RateLimitError(provider, retry_after_ms=_retry_after_ms(error))
    if isinstance(error, openai.NotFoundError):
        return ModelNotFoundError(provider, model)
    if isinstance(error, openai.BadRequestError) and getattr(error, "code", None) == "content_filter":
        return ContentFilterError(provider)
    if isinstance(error, openai.APITimeoutError):
        return LLMTimeoutError(provider)
    if isinstance(error, openai.APIStatusError):
        return LLMClientError(
            str(error),
            code=f"http_{error.status_code}",
            provider=provider,
            retryable=error.status_code >= 500,
        )
    if isinstance(error, openai.APIConnectionError):
        return LLMClientError(str(error), code="connection_error", provider=provider, retryable=True)
    return LLMClientError(str(error) or type(error).__name__, provider=provider)


class OpenAIClient:
    provider = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        timeout_s: float = 30.0,
        client=None,
    ) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout_s)
        self.model_name = model

    def _request(self, messages: list[ChatMessage], options: ChatOptions) -> dict:
        kwargs: dict = {
            "model": self.model_name,
            "messages": messages,
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        if options.top_p is not None:
            kwargs["top_p"] = options.top_p
        if options.stop:
            kwargs["stop"] = options.stop
        if options.response_format == "json":
            kwargs["response_format"] = {"type": "json_object"}
        return kwargs

    async def chat(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> ChatResponse:
        opts = options or ChatOptions()
        start = time.monotonic()
        try:
            response = await self._client.chat.completions.create(**self._request(messages, opts))
        except Exception as e:
            raise translate_error(e, self.provider, self.model_name) from e

        choice = response.choices[0]
        if choice.finish_reason == "content_filter":
            raise ContentFilterError(self.provider)

        usage = response.usage
        return ChatResponse(
            content=choice.message.content or "",
            finish_reason=choice.finish_reason or "stop",
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
                total_tokens=usage.total_tokens if usage else 0,
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
        opts = replace(options or ChatOptions(), response_format="json")
        response = await self.chat(messages, opts)
        return parse_structured(response.content, schema)

    async def chat_stream(
        self, messages: list[ChatMessage], options: ChatOptions | None = None
    ) -> AsyncIterator[StreamChunk]:
        opts = options or ChatOptions()
        try:
            stream = await self._client.chat.completions.create(
                **self._request(messages, opts),
                stream=True,
                stream_options={"include_usage": True},
            )
            usage: TokenUsage | None = None
            async for chunk in stream:
                if chunk.usage is not None:
                    usage = TokenUsage(
                        prompt_tokens=chunk.usage.prompt_tokens,
                        completion_tokens=chunk.usage.completion_tokens,
                        total_tokens=chunk.usage.total_tokens,
                    )
                if chunk.choices and chunk.choices[0].delta.content:
                    yield StreamChunk(content=chunk.choices[0].delta.content)
        except Exception as e:
            raise translate_error(e, self.provider, self.model_name) from e
        yield StreamChunk(content="", done=True, usage=usage)

    async def test_connection(self) -> bool:
        try:
            response = await self.chat(
                [{"role": "user", "content": CONNECTION_TEST_PROMPT}],
                ChatOptions(temperature=0.0, max_tokens=10),
            )
        except LLMClientError as e:
            logger.warning("connection_test_failed", provider=self.provider, error=str(e))
            return False
        return bool(response.content)


class AzureOpenAIClient(OpenAIClient):
    """Azure deployments speak the OpenAI protocol; the deployment name stands in for the model."""

    provider = "azure_openai"

    def __init__(
        self,
        api_key: str | None = None,
        endpoint: str | None = None,
        deployment: str = "",
        api_version: str = "2024-08-01-preview",
        timeout_s: float = 30.0,
        client=None,
    ) -> None:
        super().__init__(
            model=deployment,
            client=client
            or AsyncAzureOpenAI(
                api_key=api_key,
                azure_endpoint=endpoint,
                api_version=api_version,
                timeout=timeout_s,
            ),
        )
