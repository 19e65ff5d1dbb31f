"""Central configuration via Pydantic Settings. All values driven by env vars."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic_settings import BaseSettings


@dataclass(frozen=True)
class CRAGConfig:
    """Per-orchestrator tuning. Immutable so one instance can serve many requests."""

    relevance_threshold: float = 0.7
    hallucination_threshold: float = 0.7
    max_retries: int = 2
    enable_query_rewrite: bool = True
    enable_hallucination_check: bool = True
    enable_web_search: bool = False
    use_quick_grading: bool = False
    strict_validation: bool = True
    max_tokens: int = 2048
    temperature: float = 0.7
    min_relevance_score: float = 0.5
    web_search_threshold: float = 0.3
    llm_timeout_s: float = 30.0


class Settings(BaseSettings):
    # Provider selection
    llm_provider: str = "openai"  # openai, azure, anthropic, gemini

    # API Keys
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    google_api_key: str = ""
    azure_openai_api_key: str = ""

    # Models
    openai_model: str = "gpt-4o-mini"
    anthropic_model: str = "claude-3-5-haiku-latest"
    gemini_model: str = "gemini-2.0-flash"
    azure_deployment: str = ""
    azure_endpoint: str = ""
    azure_api_version: str = "2024-08-01-preview"
    openai_base_url: str | None = None

    # Generation
    temperature: float = 0.7
    max_tokens: int = 2048
    llm_timeout_s: float = 30.0

    # CRAG thresholds
    relevance_threshold: float = 0.7
    hallucination_threshold: float = 0.7
    min_relevance_score: float = 0.5
    web_search_threshold: float = 0.3
    max_retries: int = 2

    # CRAG feature flags
    enable_query_rewrite: bool = True
    enable_hallucination_check: bool = True
    enable_web_search: bool = False
    use_quick_grading: bool = False
    strict_validation: bool = True

    # Data
    snapshot_dir: str = "data/snapshots"

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = {"env_file": ".env", "env_prefix": "CRAG_"}

    def to_crag_config(self) -> CRAGConfig:
        return CRAGConfig(
            relevance_threshold=self.relevance_threshold,
            hallucination_threshold=self.hallucination_threshold,
            max_retries=self.max_retries,
            enable_query_rewrite=self.enable_query_rewrite,
            enable_hallucination_check=self.enable_hallucination_check,
            enable_web_search=self.enable_web_search,
            use_quick_grading=self.use_quick_grading,
            strict_validation=self.strict_validation,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            min_relevance_score=self.min_relevance_score,
            web_search_threshold=self.web_search_threshold,
            llm_timeout_s=self.llm_timeout_s,
        )
