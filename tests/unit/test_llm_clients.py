"""Tests for the provider adapters, driven by fake SDK clients."""

from types import SimpleNamespace

import anthropic
import httpx
import openai
import pytest
from google.genai import errors as genai_errors

from fin_crag.config.settings import Settings
from fin_crag.exceptions import (
    AuthenticationError,
    ConfigurationError,
    ContentFilterError,
    LLMClientError,
    LLMTimeoutError,
    ModelNotFoundError,
    RateLimitError,
)
from fin_crag.generation import anthropic_client, gemini_provider, openai_client
from fin_crag.generation.anthropic_client import AnthropicClient, split_system
from fin_crag.generation.factory import create_llm_client, create_llm_client_from_settings
from fin_crag.generation.gemini_provider import GeminiClient, to_contents
from fin_crag.generation.openai_client import AzureOpenAIClient, OpenAIClient
from fin_crag.models.llm import ChatOptions
from fin_crag.models.schemas import RelevanceAssessment

MESSAGES = [
    {"role": "system", "content": "Be precise."},
    {"role": "user", "content": "Food spending?"},
]


def _http_response(status: int, headers: dict | None = None) -> httpx.Response:
    return httpx.Response(
        status, headers=headers or {}, request=httpx.Request("POST", "https://api.example.test/v1")
    )


class Recorder:
    """Async callable that records kwargs and returns (or raises) a canned value."""

    def __init__(self, result=None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.kwargs: dict = {}

    async def __call__(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        return self.result


# --- OpenAI ---


def _openai_completion(content="RM450.50", finish_reason="stop"):
    return SimpleNamespace(
        choices=[SimpleNamespace(finish_reason=finish_reason, message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=4, total_tokens=16),
        model="gpt-4o-mini",
    )


def _openai_sdk(recorder: Recorder):
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=recorder)))


@pytest.mark.asyncio
async def test_openai_chat():
    create = Recorder(_openai_completion())
    client = OpenAIClient(client=_openai_sdk(create))
    response = await client.chat(MESSAGES, ChatOptions(temperature=0.2, max_tokens=50, stop=["END"]))

    assert response.content == "RM450.50"
    assert response.usage.total_tokens == 16
    assert create.kwargs["messages"] == MESSAGES
    assert create.kwargs["temperature"] == 0.2
    assert create.kwargs["stop"] == ["END"]
    assert "response_format" not in create.kwargs


@pytest.mark.asyncio
async def test_openai_structured_uses_json_mode():
    create = Recorder(_openai_completion('{"is_relevant": "yes", "confidence": 0.8}'))
    client = OpenAIClient(client=_openai_sdk(create))
    result = await client.chat_structured(MESSAGES, RelevanceAssessment)
    assert result.is_relevant == "yes"
    assert create.kwargs["response_format"] == {"type": "json_object"}


@pytest.mark.asyncio
async def test_openai_content_filter_finish():
    client = OpenAIClient(client=_openai_sdk(Recorder(_openai_completion("", "content_filter"))))
    with pytest.raises(ContentFilterError):
        await client.chat(MESSAGES)


@pytest.mark.asyncio
async def test_openai_errors_are_translated():
    error = openai.AuthenticationError("bad key", response=_http_response(401), body=None)
    client = OpenAIClient(client=_openai_sdk(Recorder(error=error)))
    with pytest.raises(AuthenticationError) as exc:
        await client.chat(MESSAGES)
    assert exc.value.provider == "openai"
    assert not exc.value.retryable


@pytest.mark.asyncio
async def test_openai_connection_test_reports_failure():
    error = openai.AuthenticationError("bad key", response=_http_response(401), body=None)
    client = OpenAIClient(client=_openai_sdk(Recorder(error=error)))
    assert await client.test_connection() is False


def test_openai_translate_error_variants():
    translate = openai_client.translate_error
    limited = translate(
        openai.RateLimitError("slow down", response=_http_response(429, {"retry-after": "2"}), body=None),
        "openai",
        "gpt-4o-mini",
    )
    assert isinstance(limited, RateLimitError)
    assert limited.retry_after_ms == 2000
    assert limited.retryable

    missing = translate(
        openai.NotFoundError("nope", response=_http_response(404), body=None), "openai", "gpt-x"
    )
    assert isinstance(missing, ModelNotFoundError)
    assert missing.model == "gpt-x"

    server = translate(
        openai.InternalServerError("boom", response=_http_response(503), body=None), "openai", "m"
    )
    assert server.code == "http_503"
    assert server.retryable

    timeout = translate(openai.APITimeoutError(request=httpx.Request("POST", "https://x")), "openai", "m")
    assert isinstance(timeout, LLMTimeoutError)

    generic = translate(ValueError("odd"), "openai", "m")
    assert type(generic) is LLMClientError
    assert generic.code == "unknown_error"


def test_azure_client_uses_deployment_as_model():
    client = AzureOpenAIClient(deployment="finance-gpt", client=_openai_sdk(Recorder()))
    assert client.provider == "azure_openai"
    assert client.model_name == "finance-gpt"


# --- Anthropic ---


def _anthropic_message(text="RM450.50"):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text), SimpleNamespace(type="tool_use")],
        usage=SimpleNamespace(input_tokens=20, output_tokens=5),
        stop_reason="end_turn",
        model="claude-3-5-haiku-latest",
    )


def test_split_system_merges_turns():
    system, turns = split_system(
        [
            {"role": "system", "content": "A"},
            {"role": "user", "content": "one"},
            {"role": "user", "content": "two"},
            {"role": "system", "content": "B"},
            {"role": "assistant", "content": "three"},
        ]
    )
    assert system == "A\n\nB"
    assert turns == [
        {"role": "user", "content": "one\n\ntwo"},
        {"role": "assistant", "content": "three"},
    ]


def test_split_system_without_system_prompt():
    system, turns = split_system([{"role": "user", "content": "hi"}])
    assert system is None
    assert turns == [{"role": "user", "content": "hi"}]


@pytest.mark.asyncio
async def test_anthropic_chat():
    create = Recorder(_anthropic_message())
    client = AnthropicClient(client=SimpleNamespace(messages=SimpleNamespace(create=create)))
    response = await client.chat(MESSAGES, ChatOptions(stop=["END"]))

    assert response.content == "RM450.50"
    assert response.usage.total_tokens == 25
    assert response.finish_reason == "end_turn"
    assert create.kwargs["system"] == "Be precise."
    assert create.kwargs["messages"] == [{"role": "user", "content": "Food spending?"}]
    assert create.kwargs["stop_sequences"] == ["END"]


@pytest.mark.asyncio
async def test_anthropic_json_mode_adds_instruction():
    create = Recorder(_anthropic_message('{"is_relevant": "no", "confidence": 0.1}'))
    client = AnthropicClient(client=SimpleNamespace(messages=SimpleNamespace(create=create)))
    result = await client.chat_structured(MESSAGES, RelevanceAssessment)
    assert result.is_relevant == "no"
    assert create.kwargs["system"].endswith(anthropic_client.JSON_INSTRUCTION)


def test_anthropic_translate_error_variants():
    translate = anthropic_client.translate_error
    auth = translate(
        anthropic.AuthenticationError("bad key", response=_http_response(401), body=None), "anthropic", "m"
    )
    assert isinstance(auth, AuthenticationError)

    limited = translate(
        anthropic.RateLimitError("slow", response=_http_response(429, {"retry-after": "1.5"}), body=None),
        "anthropic",
        "m",
    )
    assert limited.retry_after_ms == 1500

    missing = translate(anthropic.NotFoundError("nope", response=_http_response(404), body=None), "anthropic", "m")
    assert isinstance(missing, ModelNotFoundError)


# --- Gemini ---


def _gemini_sdk(recorder: Recorder):
    return SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(generate_content=recorder)))


def _gemini_response(text="RM450.50", finish="STOP"):
    return SimpleNamespace(
        text=text,
        candidates=[SimpleNamespace(finish_reason=finish)],
        usage_metadata=SimpleNamespace(prompt_token_count=9, candidates_token_count=3),
    )


def test_to_contents_maps_roles():
    system, contents = to_contents(
        [*MESSAGES, {"role": "assistant", "content": "RM450.50"}]
    )
    assert system == "Be precise."
    assert [c.role for c in contents] == ["user", "model"]
    assert contents[1].parts[0].text == "RM450.50"


@pytest.mark.asyncio
async def test_gemini_chat():
    generate = Recorder(_gemini_response())
    client = GeminiClient(client=_gemini_sdk(generate))
    response = await client.chat(MESSAGES, ChatOptions(response_format="json"))

    assert response.content == "RM450.50"
    assert response.usage.total_tokens == 12
    assert response.finish_reason == "stop"
    config = generate.kwargs["config"]
    assert config.system_instruction
    assert config.response_mime_type == "application/json"


@pytest.mark.asyncio
async def test_gemini_safety_block():
    client = GeminiClient(client=_gemini_sdk(Recorder(_gemini_response("", "SAFETY"))))
    with pytest.raises(ContentFilterError):
        await client.chat(MESSAGES)


def test_gemini_translate_error():
    error = genai_errors.APIError(429, {"error": {"code": 429, "message": "quota", "status": "RESOURCE_EXHAUSTED"}})
    assert isinstance(gemini_provider.translate_error(error, "gemini", "m"), RateLimitError)


# --- Factory ---


def test_factory_rejects_unknown_provider():
    with pytest.raises(ConfigurationError):
        create_llm_client("cohere", "key")


def test_factory_requires_api_key():
    with pytest.raises(ConfigurationError):
        create_llm_client("openai", "")


def test_factory_azure_needs_endpoint_and_deployment():
    with pytest.raises(ConfigurationError):
        create_llm_client("azure", "key", "deployment")
    with pytest.raises(ConfigurationError):
        create_llm_client("azure", "key", None, azure_endpoint="https://example.openai.azure.com")


def test_factory_builds_each_provider():
    assert create_llm_client("OpenAI", "key").provider == "openai"
    assert create_llm_client("anthropic", "key").model_name == "claude-3-5-haiku-latest"
    assert create_llm_client("gemini", "key", "gemini-2.0-flash").provider == "gemini"
    azure = create_llm_client("azure", "key", "dep", azure_endpoint="https://example.openai.azure.com")
    assert azure.model_name == "dep"


def test_factory_from_settings():
    settings = Settings(llm_provider="anthropic", anthropic_api_key="key", _env_file=None)
    client = create_llm_client_from_settings(settings)
    assert client.provider == "anthropic"

    with pytest.raises(ConfigurationError):
        create_llm_client_from_settings(Settings(llm_provider="mystery", _env_file=None))
