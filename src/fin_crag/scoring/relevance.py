"""Relevance grading of retrieved bundles: keyword heuristics or an LLM verdict."""

from __future__ import annotations

import asyncio
import json

import numpy as np

from fin_crag.config.constants import (
    GRADING_BATCH_SIZE,
    GRADING_MAX_TOKENS,
    GRADING_SAMPLE_RECORDS,
    GRADING_SUMMARY_AGGREGATIONS,
    GRADING_SUMMARY_INSIGHTS,
)
from fin_crag.generation.prompt_templates import (
    RELEVANCE_GRADING_PROMPT,
    RELEVANCE_GRADING_SYSTEM,
)
from fin_crag.generation.structured import chat_structured
from fin_crag.models.domain import AggregatedGradingResult, GradingResult, RetrievedData
from fin_crag.models.llm import ChatOptions
from fin_crag.models.schemas import RelevanceAssessment
from fin_crag.observability.logger import get_logger

logger = get_logger("relevance")

SOURCE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "transactions": ("spending", "spent", "expense", "bought", "purchase", "money", "payment"),
    "budgets": ("budget", "limit", "allocation", "spending limit"),
    "goals": ("goal", "target", "saving", "savings", "save for"),
    "subscriptions": ("subscription", "recurring", "monthly", "cancel"),
    "credit_cards": ("credit card", "card", "credit", "utilization", "payment due"),
    "tax": ("tax", "deduction", "relief", "lhdn", "pcb", "claim"),
    "income": ("income", "salary", "earning", "earned", "paycheck"),
    "forecasts": ("forecast", "predict", "projection", "next month", "future"),
}


def assessment_to_score(assessment: RelevanceAssessment) -> float:
    c = max(0.0, min(1.0, assessment.confidence))
    if assessment.is_relevant == "yes":
        return max(0.7, c)
    if assessment.is_relevant == "partial":
        return max(0.4, min(0.7, c))
    return min(0.3, c)


def document_summary(document: RetrievedData) -> str:
    parts: list[str] = []
    if document.aggregations:
        items = list(document.aggregations.items())[:GRADING_SUMMARY_AGGREGATIONS]
        parts.append("Key Metrics:\n" + "\n".join(f"{k}: {v}" for k, v in items))
    if document.insights:
        parts.append("Insights:\n" + "\n".join(document.insights[:GRADING_SUMMARY_INSIGHTS]))
    if document.data:
        sample = document.data[:GRADING_SAMPLE_RECORDS]
        parts.append(
            f"Sample Data ({len(sample)} of {len(document.data)}):\n"
            + json.dumps(sample, indent=2, default=str)
        )
    return "\n\n".join(parts) or "No detailed content available"


class RelevanceGrader:
    def __init__(
        self,
        llm=None,
        min_relevance_score: float = 0.5,
        min_relevant_ratio: float = 0.7,
        web_search_threshold: float = 0.3,
        quick_mode: bool = False,
    ) -> None:
        self._llm = llm
        self.min_relevance_score = min_relevance_score
        self.min_relevant_ratio = min_relevant_ratio
        self.web_search_threshold = web_search_threshold
        self.quick_mode = quick_mode or llm is None

    def quick_grade(self, document: RetrievedData, query: str) -> GradingResult:
        q = query.lower()
        terms = [w for w in q.split() if len(w) > 3]

        source_match = any(kw in q for kw in SOURCE_KEYWORDS.get(document.source, ()))
        insight_text = " ".join(document.insights).lower()
        insight_hits = sum(1 for w in terms if w in insight_text)
        agg_text = json.dumps(document.aggregations, default=str).lower()
        agg_match = any(w in agg_text for w in terms)
        has_data = document.record_count > 0

        score = 0.0
        if source_match:
            score += 0.4
        if insight_hits:
            score += min(0.3, insight_hits * 0.1)
        if agg_match:
            score += 0.2
        if has_data:
            score += 0.1
        score = round(min(1.0, score), 4)

        return GradingResult(
            is_relevant=score >= self.min_relevance_score,
            score=score,
            reason=(
                f"Heuristic: source={source_match}, insights={insight_hits}, "
                f"aggregations={agg_match}, has_data={has_data}"
            ),
            document_source=document.source,
        )

    async def grade_document(self, document: RetrievedData, query: str) -> GradingResult:
        if self.quick_mode:
            return self.quick_grade(document, query)

        messages = [
            {"role": "system", "content": RELEVANCE_GRADING_SYSTEM},
            {
                "role": "user",
                "content": RELEVANCE_GRADING_PROMPT.format(
                    query=query,
                    source=document.source,
                    description=document.description,
                    record_count=document.record_count,
                    date_range=document.date_range.label if document.date_range else "Not specified",
                    summary=document_summary(document),
                ),
            },
        ]
        try:
            assessment = await chat_structured(
                self._llm,
                messages,
                RelevanceAssessment,
                ChatOptions(temperature=0.0, max_tokens=GRADING_MAX_TOKENS),
            )
        except Exception as e:
            logger.warning("llm_grading_failed", source=document.source, error=str(e) or type(e).__name__)
            return self.quick_grade(document, query)

        score = assessment_to_score(assessment)
        return GradingResult(
            is_relevant=score >= self.min_relevance_score,
            score=score,
            reason=assessment.reasoning,
            document_source=document.source,
        )

    async def grade_documents(
        self, documents: list[RetrievedData], query: str
    ) -> AggregatedGradingResult:
        results: list[GradingResult] = []
        for i in range(0, len(documents), GRADING_BATCH_SIZE):
            batch = documents[i : i + GRADING_BATCH_SIZE]
            results.extend(await asyncio.gather(*(self.grade_document(d, query) for d in batch)))

        relevant = sum(1 for r in results if r.is_relevant)
        total = len(results)
        average = float(np.mean([r.score for r in results])) if results else 0.0
        ratio = relevant / total if total else 0.0

        aggregated = AggregatedGradingResult(
            documents=results,
            relevant_count=relevant,
            total_count=total,
            average_score=average,
            needs_query_rewrite=ratio < self.min_relevant_ratio,
            needs_web_search=ratio < self.web_search_threshold,
        )
        logger.info(
            "documents_graded",
            relevant=relevant,
            total=total,
            average_score=round(average, 4),
            mode="quick" if self.quick_mode else "llm",
        )
        return aggregated
