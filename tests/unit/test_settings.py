"""Tests for environment-driven configuration."""

from fin_crag.config.settings import CRAGConfig, Settings


def test_defaults(monkeypatch):
    monkeypatch.delenv("CRAG_LLM_PROVIDER", raising=False)
    settings = Settings(_env_file=None)
    assert settings.llm_provider == "openai"
    assert settings.strict_validation is True
    assert settings.enable_web_search is False
    assert settings.snapshot_dir == "data/snapshots"


def test_env_prefix(monkeypatch):
    monkeypatch.setenv("CRAG_LLM_PROVIDER", "gemini")
    monkeypatch.setenv("CRAG_RELEVANCE_THRESHOLD", "0.55")
    monkeypatch.setenv("CRAG_USE_QUICK_GRADING", "true")
    settings = Settings(_env_file=None)
    assert settings.llm_provider == "gemini"
    assert settings.relevance_threshold == 0.55
    assert settings.use_quick_grading is True


def test_to_crag_config(monkeypatch):
    monkeypatch.setenv("CRAG_MAX_RETRIES", "1")
    monkeypatch.setenv("CRAG_ENABLE_HALLUCINATION_CHECK", "false")
    config = Settings(_env_file=None).to_crag_config()
    assert isinstance(config, CRAGConfig)
    assert config.max_retries == 1
    assert config.enable_hallucination_check is False
    assert config.hallucination_threshold == 0.7


def test_crag_config_defaults():
    config = CRAGConfig()
    assert config.relevance_threshold == 0.7
    assert config.max_retries == 2
    assert config.enable_query_rewrite
    assert not config.use_quick_grading
