"""Pydantic models for API serialization and structured LLM outputs."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

# --- Structured LLM outputs ---


class RelevanceAssessment(BaseModel):
    is_relevant: Literal["yes", "partial", "no"] = "no"
    confidence: float = 0.0
    reasoning: str = "No reasoning provided"
    key_matches: list[str] = Field(default_factory=list)
    missing_aspects: list[str] = Field(default_factory=list)


class RewriteAssessment(BaseModel):
    rewritten_query: str
    sub_queries: list[str] = Field(default_factory=list)
    query_expansions: list[str] = Field(default_factory=list)
    detected_intent: str = "general_advice"
    confidence: float = 0.5
    reasoning: str = ""


class ValidationIssueAssessment(BaseModel):
    type: str = "unsupported_claim"
    severity: Literal["low", "medium", "high"] = "medium"
    claim: str = ""
    explanation: str = ""
    suggested_fix: str | None = None


class ValidationAssessment(BaseModel):
    is_grounded: bool = False
    confidence_score: float = 0.0
    issues: list[ValidationIssueAssessment] = Field(default_factory=list)
    grounded_claims: list[str] = Field(default_factory=list)
    ungrounded_claims: list[str] = Field(default_factory=list)
    overall_assessment: str = ""


class DecompositionResponse(BaseModel):
    questions: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_list(cls, data):
        # Models sometimes answer with a bare JSON array.
        if isinstance(data, dict) and "questions" not in data and "items" in data:
            return {"questions": data["items"]}
        return data


# --- HTTP API ---


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class QueryRequest(BaseModel):
    query: str = Field(min_length=1, max_length=2000)
    user_id: str = Field(min_length=1)
    conversation_history: list[ChatTurn] = Field(default_factory=list)
    permissions: dict[str, bool] | None = None


class QueryMetadata(BaseModel):
    original_query: str
    processed_query: str
    intent: str
    intent_confidence: float
    data_sources: list[str]
    documents_retrieved: int
    documents_relevant: int
    relevance_score: float
    query_rewritten: bool
    web_search_used: bool
    regenerated: bool
    hallucination_score: float
    confidence_score: float
    total_latency_ms: float
    llm_calls: int
    tokens_used: int
    reasons: list[str]
    stage_timings: dict[str, float]
    error: str | None = None
    fallback_answer: bool = False


class QueryResponse(BaseModel):
    content: str
    metadata: QueryMetadata


class HealthResponse(BaseModel):
    status: str
    provider: str
    model: str
    retrievers: list[str]
