"""Core domain objects used throughout the system."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any


class QueryIntent(str, Enum):
    # Declaration order breaks classification ties.
    TAX_OPTIMIZATION = "tax_optimization"
    SPENDING_ANALYSIS = "spending_analysis"
    BUDGET_REVIEW = "budget_review"
    GOAL_PROGRESS = "goal_progress"
    SUBSCRIPTION_REVIEW = "subscription_review"
    CREDIT_CARD_ADVICE = "credit_card_advice"
    INCOME_ANALYSIS = "income_analysis"
    FORECAST_REVIEW = "forecast_review"
    COMPARISON = "comparison"
    ANOMALY_DETECTION = "anomaly_detection"
    GENERAL_ADVICE = "general_advice"


class RetrieverName(str, Enum):
    TRANSACTIONS = "transactions"
    BUDGETS = "budgets"
    GOALS = "goals"
    SUBSCRIPTIONS = "subscriptions"
    CREDIT_CARDS = "credit_cards"
    TAX = "tax"
    INCOME = "income"
    FORECASTS = "forecasts"


class HallucinationType(str, Enum):
    FABRICATED_DATA = "fabricated_data"
    WRONG_CALCULATION = "wrong_calculation"
    UNSUPPORTED_CLAIM = "unsupported_claim"
    TEMPORAL_ERROR = "temporal_error"
    ENTITY_CONFUSION = "entity_confusion"
    OVERGENERALIZATION = "overgeneralization"
    FALSE_COMPARISON = "false_comparison"
    MISSING_QUALIFICATION = "missing_qualification"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# --- Query understanding ---


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date
    label: str = ""

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "label": self.label,
        }


@dataclass(frozen=True)
class AmountRange:
    min: float | None = None
    max: float | None = None


@dataclass(frozen=True)
class QueryEntities:
    date_range: DateRange | None = None
    categories: tuple[str, ...] = ()
    amounts: AmountRange | None = None
    timeframe: str | None = None  # day, week, month, quarter, year
    comparison: bool = False


@dataclass(frozen=True)
class QueryAnalysis:
    original_query: str
    normalized_query: str
    intent: QueryIntent
    confidence: float
    entities: QueryEntities
    suggested_retrievers: tuple[RetrieverName, ...]


# --- Retrieval ---


@dataclass
class RetrievalOptions:
    date_range: DateRange | None = None
    limit: int | None = None
    category_ids: list[str] | None = None
    min_amount: float | None = None
    max_amount: float | None = None
    include_metadata: bool = True


@dataclass
class SchemaColumn:
    name: str
    type: str
    description: str
    sample_values: list[str] = field(default_factory=list)


@dataclass
class SchemaRelationship:
    related_table: str
    join_column: str
    description: str


@dataclass
class SchemaMetadata:
    table_name: str
    description: str
    columns: list[SchemaColumn] = field(default_factory=list)
    relationships: list[SchemaRelationship] = field(default_factory=list)


@dataclass
class RetrievedData:
    source: str
    description: str
    record_count: int
    data: list[dict[str, Any]] = field(default_factory=list)
    aggregations: dict[str, Any] = field(default_factory=dict)
    insights: list[str] = field(default_factory=list)
    date_range: DateRange | None = None
    schema: SchemaMetadata | None = None
    relevance_score: float | None = None

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "description": self.description,
            "record_count": self.record_count,
            "date_range": self.date_range.to_dict() if self.date_range else None,
            "data": self.data,
            "aggregations": self.aggregations,
            "insights": self.insights,
        }


@dataclass
class ContextSummaries:
    financial: str = ""
    insights: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class UserContext:
    currency: str = "MYR"
    locale: str = "en-MY"
    fiscal_year: int | None = None


@dataclass
class ContextMetadata:
    retrievers_used: list[str] = field(default_factory=list)
    processing_time_ms: float = 0.0
    token_estimate: int = 0


@dataclass
class AssembledContext:
    query: str
    intent: QueryIntent
    relevant_data: list[RetrievedData]
    total_records: int
    date_range: DateRange
    summaries: ContextSummaries = field(default_factory=ContextSummaries)
    user_context: UserContext = field(default_factory=UserContext)
    metadata: ContextMetadata = field(default_factory=ContextMetadata)


# --- Grading ---


@dataclass
class GradingResult:
    is_relevant: bool
    score: float
    reason: str
    document_source: str


@dataclass
class AggregatedGradingResult:
    documents: list[GradingResult]
    relevant_count: int
    total_count: int
    average_score: float
    needs_query_rewrite: bool
    needs_web_search: bool


# --- Rewriting ---


@dataclass
class QueryRewriteResult:
    original_query: str
    rewritten_query: str
    sub_queries: list[str]
    expansions: list[str]
    intent: QueryIntent
    confidence: float
    source: str = "heuristic"  # heuristic, llm


# --- Verification ---


@dataclass
class HallucinationIssue:
    type: HallucinationType
    severity: Severity
    claim: str
    explanation: str
    suggested_fix: str | None = None


@dataclass
class ValidationResult:
    is_valid: bool
    overall_score: float
    issues: list[HallucinationIssue] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    grounded_claims: list[str] = field(default_factory=list)
    ungrounded_claims: list[str] = field(default_factory=list)
    llm_checked: bool = False


# --- Orchestration ---


@dataclass
class CRAGMetadata:
    original_query: str
    processed_query: str = ""
    intent: QueryIntent = QueryIntent.GENERAL_ADVICE
    intent_confidence: float = 0.0
    data_sources: list[str] = field(default_factory=list)
    documents_retrieved: int = 0
    documents_relevant: int = 0
    relevance_score: float = 0.0
    query_rewritten: bool = False
    web_search_used: bool = False
    regenerated: bool = False
    hallucination_score: float = 0.0
    confidence_score: float = 0.0
    total_latency_ms: float = 0.0
    llm_calls: int = 0
    tokens_used: int = 0
    reasons: list[str] = field(default_factory=list)
    stage_timings: dict[str, float] = field(default_factory=dict)
    error: str | None = None
    fallback_answer: bool = False


@dataclass
class CRAGResponse:
    content: str
    metadata: CRAGMetadata
