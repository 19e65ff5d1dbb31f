"""Query rewriting for weak retrievals: cheap heuristics first, LLM when they are unsure."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date

from fin_crag.config.constants import (
    ABBREVIATION_BONUS,
    HEURISTIC_BASE_CONFIDENCE,
    HEURISTIC_REWRITE_ACCEPT,
    INTENT_KEYWORD_BONUS,
    MAX_REWRITE_CONFIDENCE,
    REWRITE_MAX_TOKENS,
    REWRITE_TEMPERATURE,
    TIME_QUALIFIER_BONUS,
)
from fin_crag.generation.prompt_templates import (
    QUERY_REWRITE_PROMPT,
    QUERY_REWRITE_SYSTEM,
    WEB_SEARCH_REWRITE_SYSTEM,
)
from fin_crag.generation.structured import chat_structured
from fin_crag.models.domain import QueryIntent, QueryRewriteResult
from fin_crag.models.llm import ChatOptions
from fin_crag.models.schemas import RewriteAssessment
from fin_crag.observability.logger import get_logger

logger = get_logger("query_rewriter")

ABBREVIATIONS: dict[str, str] = {
    "pcb": "Potongan Cukai Bulanan / Monthly Tax Deduction",
    "epf": "Employees Provident Fund (KWSP)",
    "kwsp": "KWSP (EPF)",
    "socso": "SOCSO (PERKESO)",
    "lhdn": "LHDN (Inland Revenue Board)",
    "ya": "Year of Assessment",
}

# First bucket that matches sets the intent.
INTENT_KEYWORDS: tuple[tuple[QueryIntent, tuple[str, ...]], ...] = (
    (QueryIntent.TAX_OPTIMIZATION, ("tax", "relief", "deduction", "claim", "refund")),
    (QueryIntent.SPENDING_ANALYSIS, ("spending", "spent", "expense", "money going", "overspend")),
    (QueryIntent.BUDGET_REVIEW, ("budget", "limit", "over budget", "under budget")),
    (QueryIntent.GOAL_PROGRESS, ("goal", "saving", "target", "reach")),
    (QueryIntent.SUBSCRIPTION_REVIEW, ("subscription", "recurring", "cancel")),
    (QueryIntent.CREDIT_CARD_ADVICE, ("credit card", "card", "utilization")),
    (QueryIntent.INCOME_ANALYSIS, ("income", "salary", "earning", "earned")),
    (QueryIntent.FORECAST_REVIEW, ("forecast", "predict", "next month", "will i spend")),
    (QueryIntent.COMPARISON, ("compare", "vs", "versus", "last month")),
    (QueryIntent.ANOMALY_DETECTION, ("unusual", "strange", "suspicious")),
    (QueryIntent.GENERAL_ADVICE, ("advice", "help", "should i", "recommend")),
)

_SPENDING = re.compile(r"spending|spent", re.I)


@dataclass
class RewriteContext:
    previous_queries: list[str] = field(default_factory=list)
    intent: QueryIntent | None = None
    failed_retrieval_reason: str | None = None
    available_sources: list[str] = field(default_factory=list)


def map_intent(raw: str) -> QueryIntent:
    """Map a free-form intent label onto QueryIntent, falling back to general advice."""
    normalized = re.sub(r"\s+", "_", raw.strip().lower())
    try:
        return QueryIntent(normalized)
    except ValueError:
        pass
    for intent in QueryIntent:
        if intent.value.split("_")[0] in normalized:
            return intent
    return QueryIntent.GENERAL_ADVICE


def heuristic_rewrite(query: str) -> QueryRewriteResult:
    rewritten = query
    expansions: list[str] = []
    intent = QueryIntent.GENERAL_ADVICE
    confidence = HEURISTIC_BASE_CONFIDENCE
    q = query.lower()

    if not any(unit in q for unit in ("month", "year", "week")) and _SPENDING.search(q):
        rewritten = _SPENDING.sub("spending this month", rewritten, count=1)
        confidence += TIME_QUALIFIER_BONUS

    for abbr, expanded in ABBREVIATIONS.items():
        if re.search(rf"\b{abbr}\b", q):
            expansions.append(expanded)
            intent = QueryIntent.TAX_OPTIMIZATION
            confidence += ABBREVIATION_BONUS

    for bucket_intent, keywords in INTENT_KEYWORDS:
        if any(kw in q for kw in keywords):
            intent = bucket_intent
            confidence += INTENT_KEYWORD_BONUS
            break

    if expansions:
        rewritten = f"{rewritten} ({'; '.join(expansions)})"

    if intent == QueryIntent.TAX_OPTIMIZATION and "malaysia" not in q:
        expansions.append("Malaysian tax context")

    return QueryRewriteResult(
        original_query=query,
        rewritten_query=rewritten,
        sub_queries=[],
        expansions=expansions,
        intent=intent,
        confidence=min(confidence, MAX_REWRITE_CONFIDENCE),
        source="heuristic",
    )


def _context_block(context: RewriteContext | None) -> str:
    if context is None:
        return ""
    parts: list[str] = []
    if context.previous_queries:
        parts.append(f"Previous questions: {', '.join(context.previous_queries[-2:])}")
    if context.intent is not None:
        parts.append(f"Detected intent: {context.intent.value}")
    if context.available_sources:
        parts.append(f"User has: {', '.join(context.available_sources)}")
    return f"Context:\n{chr(10).join(parts)}\n\n" if parts else ""


class QueryRewriter:
    def __init__(self, llm=None) -> None:
        self._llm = llm

    async def rewrite(self, query: str, context: RewriteContext | None = None) -> QueryRewriteResult:
        heuristic = heuristic_rewrite(query)
        if heuristic.confidence > HEURISTIC_REWRITE_ACCEPT or self._llm is None:
            logger.info(
                "query_rewritten",
                source="heuristic",
                intent=heuristic.intent.value,
                confidence=round(heuristic.confidence, 4),
            )
            return heuristic

        failure_note = ""
        if context is not None and context.failed_retrieval_reason:
            failure_note = f"Note: Previous retrieval failed because: {context.failed_retrieval_reason}\n\n"
        messages = [
            {"role": "system", "content": QUERY_REWRITE_SYSTEM},
            {
                "role": "user",
                "content": QUERY_REWRITE_PROMPT.format(
                    context_block=_context_block(context),
                    query=query,
                    failure_note=failure_note,
                ),
            },
        ]
        try:
            assessment = await chat_structured(
                self._llm,
                messages,
                RewriteAssessment,
                ChatOptions(temperature=REWRITE_TEMPERATURE, max_tokens=REWRITE_MAX_TOKENS),
            )
        except Exception as e:
            logger.warning("llm_rewrite_failed", error=str(e) or type(e).__name__)
            return heuristic

        result = QueryRewriteResult(
            original_query=query,
            rewritten_query=assessment.rewritten_query.strip() or query,
            sub_queries=assessment.sub_queries,
            expansions=assessment.query_expansions,
            intent=map_intent(assessment.detected_intent),
            confidence=max(0.0, min(1.0, assessment.confidence)),
            source="llm",
        )
        logger.info(
            "query_rewritten",
            source="llm",
            intent=result.intent.value,
            confidence=round(result.confidence, 4),
        )
        return result

    async def rewrite_for_web_search(self, query: str, today: date | None = None) -> str:
        fallback = f"{query} Malaysia {(today or date.today()).year}"
        if self._llm is None:
            return fallback
        messages = [
            {"role": "system", "content": WEB_SEARCH_REWRITE_SYSTEM},
            {"role": "user", "content": f'Transform this for web search: "{query}"'},
        ]
        try:
            response = await self._llm.chat(messages, ChatOptions(temperature=0.0, max_tokens=100))
        except Exception as e:
            logger.warning("web_search_rewrite_failed", error=str(e) or type(e).__name__)
            return fallback
        cleaned = response.content.strip().strip("\"'")
        return cleaned or fallback
