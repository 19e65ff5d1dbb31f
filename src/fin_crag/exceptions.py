"""Custom exception hierarchy for the CRAG engine."""

from __future__ import annotations


class CRAGError(Exception):
    """Base exception for all CRAG engine errors."""


class RetrievalError(CRAGError):
    """Error while fetching data from a retriever."""


class ConfigurationError(CRAGError):
    """Error in system configuration."""


class LLMClientError(CRAGError):
    """Error raised by an LLM provider adapter."""

    def __init__(
        self,
        message: str,
        code: str = "unknown_error",
        provider: str = "unknown",
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.provider = provider
        self.retryable = retryable


class AuthenticationError(LLMClientError):
    def __init__(self, provider: str, message: str = "Invalid API key or authentication failed") -> None:
        super().__init__(message, code="authentication_error", provider=provider, retryable=False)


class RateLimitError(LLMClientError):
    def __init__(
        self,
        provider: str,
        retry_after_ms: int | None = None,
        message: str = "Rate limit exceeded",
    ) -> None:
        super().__init__(message, code="rate_limit", provider=provider, retryable=True)
        self.retry_after_ms = retry_after_ms


class ModelNotFoundError(LLMClientError):
    def __init__(self, provider: str, model: str) -> None:
        super().__init__(
            f"Model '{model}' not found or not accessible",
            code="model_not_found",
            provider=provider,
            retryable=False,
        )
        self.model = model


class ContentFilterError(LLMClientError):
    def __init__(self, provider: str, message: str = "Content was filtered by the provider") -> None:
        super().__init__(message, code="content_filter", provider=provider, retryable=False)


class LLMTimeoutError(LLMClientError):
    """A call exceeded its deadline or was cancelled by the caller."""

    def __init__(self, provider: str, message: str = "LLM call timed out") -> None:
        super().__init__(message, code="timeout", provider=provider, retryable=True)


class LLMBudgetExceeded(LLMClientError):
    """A pipeline stage tried to make more LLM calls than it is allowed."""

    def __init__(self, stage: str, limit: int) -> None:
        super().__init__(
            f"LLM call budget for stage '{stage}' exhausted ({limit})",
            code="budget_exceeded",
            provider="meter",
            retryable=True,
        )
        self.stage = stage
        self.limit = limit
