"""Build an LLM client for the configured provider."""

from __future__ import annotations

from fin_crag.config.settings import Settings
from fin_crag.exceptions import ConfigurationError
from fin_crag.observability.logger import get_logger
from fin_crag.protocols.llm import LLMClient

logger = get_logger("llm_factory")

PROVIDERS = ("openai", "azure", "anthropic", "gemini")


def create_llm_client(
    provider: str,
    api_key: str,
    model: str | None = None,
    *,
    base_url: str | None = None,
    azure_endpoint: str | None = None,
    azure_api_version: str = "2024-08-01-preview",
    timeout_s: float = 30.0,
) -> LLMClient:
    provider = provider.lower().strip()
    if provider not in PROVIDERS:
        raise ConfigurationError(f"Unknown LLM provider '{provider}'. Expected one of {PROVIDERS}")
    if not api_key:
        raise ConfigurationError(f"No API key configured for provider '{provider}'")

    if provider == "openai":
        from fin_crag.generation.openai_client import OpenAIClient

        client = OpenAIClient(
            api_key=api_key, model=model or "gpt-4o-mini", base_url=base_url, timeout_s=timeout_s
        )
    elif provider == "azure":
        from fin_crag.generation.openai_client import AzureOpenAIClient

        if not azure_endpoint or not model:
            raise ConfigurationError("Azure OpenAI needs both an endpoint and a deployment name")
        client = AzureOpenAIClient(
            api_key=api_key,
            endpoint=azure_endpoint,
            deployment=model,
            api_version=azure_api_version,
            timeout_s=timeout_s,
        )
    elif provider == "anthropic":
        from fin_crag.generation.anthropic_client import AnthropicClient

        client = AnthropicClient(
            api_key=api_key, model=model or "claude-3-5-haiku-latest", timeout_s=timeout_s
        )
    else:
        from fin_crag.generation.gemini_provider import GeminiClient

        client = GeminiClient(api_key=api_key, model=model or "gemini-2.0-flash")

    logger.info("llm_client_created", provider=client.provider, model=client.model_name)
    return client


def create_llm_client_from_settings(settings: Settings) -> LLMClient:
    provider = settings.llm_provider.lower().strip()
    keys = {
        "openai": (settings.openai_api_key, settings.openai_model),
        "azure": (settings.azure_openai_api_key, settings.azure_deployment),
        "anthropic": (settings.anthropic_api_key, settings.anthropic_model),
        "gemini": (settings.google_api_key, settings.gemini_model),
    }
    if provider not in keys:
        raise ConfigurationError(f"Unknown LLM provider '{provider}'. Expected one of {PROVIDERS}")
    api_key, model = keys[provider]
    return create_llm_client(
        provider,
        api_key,
        model,
        base_url=settings.openai_base_url,
        azure_endpoint=settings.azure_endpoint,
        azure_api_version=settings.azure_api_version,
        timeout_s=settings.llm_timeout_s,
    )
