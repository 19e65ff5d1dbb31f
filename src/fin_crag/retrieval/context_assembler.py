"""Fan out to relevant retrievers and assemble one prompt-ready financial context."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Mapping
from dataclasses import replace
from datetime import date

from fin_crag.config.constants import (
    BASE_RETRIEVAL_LIMIT,
    CONTEXT_TOKEN_BUFFER,
    MAX_CONTEXT_TOKENS,
    MAX_MERGED_INSIGHTS,
    MAX_RETRIEVERS_PER_QUERY,
    MAX_SUMMARY_INSIGHTS,
    MAX_SUMMARY_RECOMMENDATIONS,
    MIN_TRIMMED_SOURCE_TOKENS,
)
from fin_crag.models.domain import (
    AssembledContext,
    ContextMetadata,
    ContextSummaries,
    QueryAnalysis,
    QueryIntent,
    RetrievalOptions,
    RetrievedData,
    RetrieverName,
    UserContext,
)
from fin_crag.observability.logger import get_logger
from fin_crag.retrieval.dates import date_range_preset
from fin_crag.retrieval.tokens import count_tokens
from fin_crag.retrieval.registry import RetrieverRegistry

logger = get_logger("context_assembler")

R = RetrieverName

# Higher number = more important for the intent.
RETRIEVER_PRIORITIES: dict[QueryIntent, dict[RetrieverName, int]] = {
    QueryIntent.TAX_OPTIMIZATION: {R.TAX: 10, R.TRANSACTIONS: 8, R.INCOME: 7, R.BUDGETS: 3, R.GOALS: 2},
    QueryIntent.SPENDING_ANALYSIS: {
        R.TRANSACTIONS: 10, R.BUDGETS: 8, R.FORECASTS: 6, R.SUBSCRIPTIONS: 5, R.CREDIT_CARDS: 4,
    },
    QueryIntent.BUDGET_REVIEW: {R.BUDGETS: 10, R.TRANSACTIONS: 9, R.GOALS: 5, R.FORECASTS: 4},
    QueryIntent.GOAL_PROGRESS: {R.GOALS: 10, R.TRANSACTIONS: 7, R.INCOME: 6, R.BUDGETS: 5},
    QueryIntent.SUBSCRIPTION_REVIEW: {R.SUBSCRIPTIONS: 10, R.TRANSACTIONS: 7, R.BUDGETS: 5},
    QueryIntent.CREDIT_CARD_ADVICE: {R.CREDIT_CARDS: 10, R.TRANSACTIONS: 8, R.BUDGETS: 4},
    QueryIntent.INCOME_ANALYSIS: {R.INCOME: 10, R.TRANSACTIONS: 7, R.TAX: 6, R.GOALS: 4},
    QueryIntent.FORECAST_REVIEW: {R.FORECASTS: 10, R.TRANSACTIONS: 8, R.BUDGETS: 7, R.SUBSCRIPTIONS: 5},
    QueryIntent.COMPARISON: {R.TRANSACTIONS: 10, R.BUDGETS: 8, R.INCOME: 7, R.FORECASTS: 6},
    QueryIntent.ANOMALY_DETECTION: {R.TRANSACTIONS: 10, R.FORECASTS: 8, R.CREDIT_CARDS: 5},
    QueryIntent.GENERAL_ADVICE: {
        R.TRANSACTIONS: 8, R.BUDGETS: 7, R.GOALS: 6, R.INCOME: 5,
        R.SUBSCRIPTIONS: 4, R.CREDIT_CARDS: 3, R.TAX: 3, R.FORECASTS: 3,
    },
}

# (source, [(label, aggregation key), ...]) used for the one-line financial summary.
SUMMARY_FIELDS: dict[QueryIntent, tuple[RetrieverName, tuple[tuple[str, str], ...]]] = {
    QueryIntent.TAX_OPTIMIZATION: (
        R.TAX,
        (
            ("Tax Year (YA)", "taxYear"),
            ("Annual Income", "annualIncome"),
            ("Reliefs Claimed", "totalReliefsClaimed"),
            ("Tax Bracket", "estimatedTaxBracket"),
            ("Projected", "projectedRefundOrOwed"),
            ("Potential Additional Savings", "potentialAdditionalSavings"),
        ),
    ),
    QueryIntent.BUDGET_REVIEW: (
        R.BUDGETS,
        (
            ("Budgets", "totalBudgets"),
            ("Overall Utilization", "overallUtilization"),
            ("Over Budget", "overBudgetCount"),
            ("Under Budget", "underBudgetCount"),
        ),
    ),
    QueryIntent.GOAL_PROGRESS: (
        R.GOALS,
        (
            ("Goals", "totalGoals"),
            ("Overall Progress", "overallProgress"),
            ("On Track", "onTrackCount"),
            ("Completed", "completedCount"),
        ),
    ),
    QueryIntent.CREDIT_CARD_ADVICE: (
        R.CREDIT_CARDS,
        (
            ("Cards", "totalCards"),
            ("Total Limit", "totalCreditLimit"),
            ("Current Balance", "totalBalance"),
            ("Utilization", "overallUtilization"),
            ("Monthly Spending", "totalMonthlySpending"),
        ),
    ),
    QueryIntent.INCOME_ANALYSIS: (
        R.INCOME,
        (
            ("Total Income", "totalIncome"),
            ("Monthly Average", "avgMonthlyIncome"),
            ("Savings Rate", "savingsRate"),
            ("Stability", "incomeStability"),
            ("YoY Change", "yearOverYearChange"),
        ),
    ),
    QueryIntent.FORECAST_REVIEW: (
        R.FORECASTS,
        (
            ("Trend", "overallTrend"),
            ("Current Month Projection", "currentMonthProjection"),
            ("Daily Rate", "dailySpendingRate"),
            ("Confidence", "confidenceScore"),
        ),
    ),
}

GENERAL_SUMMARY_FIELDS = (
    ("Expenses", "totalExpenses"),
    ("Income", "totalIncome"),
    ("Net", "netCashFlow"),
)

RECOMMENDATION_MARKERS = (
    ("\u26a0\ufe0f", "Consider:"),
    ("\U0001f6a8", "Action needed:"),
    ("\U0001f4a1", "Tip:"),
)


def _value(aggregations: Mapping, key: str) -> str:
    value = aggregations.get(key)
    return "N/A" if value is None else str(value)


def retrieval_limit(retriever_count: int) -> int:
    """Fewer retrievers get more records each."""
    return int(BASE_RETRIEVAL_LIMIT // max(1, retriever_count / 2))


def select_retrievers(
    analysis: QueryAnalysis,
    registry: RetrieverRegistry,
    permissions: Mapping[str, bool] | None = None,
) -> list[RetrieverName]:
    priorities = RETRIEVER_PRIORITIES.get(analysis.intent, {})
    ordered = list(dict.fromkeys(analysis.suggested_retrievers))
    for name, _ in sorted(priorities.items(), key=lambda kv: kv[1], reverse=True):
        if name not in ordered:
            ordered.append(name)

    selected = [
        name
        for name in ordered
        if name in registry
        and registry[name].is_relevant_for(analysis.intent)
        and registry.is_permitted(name, permissions)
    ]
    return selected[:MAX_RETRIEVERS_PER_QUERY]


def build_summaries(data: list[RetrievedData], intent: QueryIntent) -> ContextSummaries:
    insights: list[str] = []
    for bundle in data:
        insights.extend(bundle.insights)

    recommendations: list[str] = []
    for insight in insights:
        for marker, label in RECOMMENDATION_MARKERS:
            if marker in insight:
                recommendations.append(insight.replace(marker, label, 1).strip())
                break

    return ContextSummaries(
        financial=_financial_summary(data, intent),
        insights=insights[:MAX_SUMMARY_INSIGHTS],
        recommendations=recommendations[:MAX_SUMMARY_RECOMMENDATIONS],
    )


def _financial_summary(data: list[RetrievedData], intent: QueryIntent) -> str:
    by_source = {bundle.source: bundle for bundle in data}

    if intent == QueryIntent.SPENDING_ANALYSIS:
        tx = by_source.get(R.TRANSACTIONS.value)
        if tx is None or not tx.aggregations:
            return ""
        agg = tx.aggregations
        change = agg.get("percentChangeFromLastPeriod")
        period = tx.date_range.label if tx.date_range and tx.date_range.label else "Current Month"
        return (
            f"Period: {period}. "
            f"Total Expenses: {_value(agg, 'totalExpenses')}. "
            f"Net Cash Flow: {_value(agg, 'netCashFlow')}. "
            f"Trend: {_value(agg, 'expensesTrend')}. "
            f"Change from Last Period: {'N/A' if change is None else f'{change}%'}."
        )

    if intent in SUMMARY_FIELDS:
        source, fields = SUMMARY_FIELDS[intent]
    else:
        source, fields = R.TRANSACTIONS, GENERAL_SUMMARY_FIELDS

    bundle = by_source.get(source.value)
    if bundle is None or not bundle.aggregations:
        return ""
    return " ".join(f"{label}: {_value(bundle.aggregations, key)}." for label, key in fields)


def _bundle_tokens(bundle: RetrievedData) -> int:
    return count_tokens(json.dumps(bundle.to_dict(), default=str))


def trim_to_token_budget(data: list[RetrievedData], max_tokens: int) -> list[RetrievedData]:
    """Keep bundles in priority order until the budget runs out.

    The first bundle that does not fit is reduced to its aggregations and three
    insights when enough budget remains; nothing is added after it.
    """
    used = 0
    trimmed: list[RetrievedData] = []
    for bundle in data:
        tokens = _bundle_tokens(bundle)
        if used + tokens <= max_tokens:
            trimmed.append(bundle)
            used += tokens
            continue
        if max_tokens - used > MIN_TRIMMED_SOURCE_TOKENS:
            trimmed.append(replace(bundle, data=[], insights=bundle.insights[:3], schema=None))
            break
    return trimmed


def estimate_context_tokens(data: list[RetrievedData], summaries: ContextSummaries) -> int:
    return (
        count_tokens(json.dumps([b.to_dict() for b in data], default=str))
        + count_tokens(summaries.financial)
        + count_tokens(" ".join(summaries.insights))
        + count_tokens(" ".join(summaries.recommendations))
    )


class ContextAssembler:
    def __init__(
        self,
        registry: RetrieverRegistry,
        retriever_timeout_s: float | None = None,
    ) -> None:
        self._registry = registry
        self._timeout_s = retriever_timeout_s

    @property
    def registry(self) -> RetrieverRegistry:
        return self._registry

    async def assemble(
        self,
        user_id: str,
        analysis: QueryAnalysis,
        permissions: Mapping[str, bool] | None = None,
        today: date | None = None,
    ) -> AssembledContext:
        start = time.monotonic()
        selected = select_retrievers(analysis, self._registry, permissions)
        date_range = analysis.entities.date_range or date_range_preset("this_month", today)
        amounts = analysis.entities.amounts

        options = RetrievalOptions(
            date_range=date_range,
            limit=retrieval_limit(len(selected)),
            category_ids=list(analysis.entities.categories) or None,
            min_amount=amounts.min if amounts else None,
            max_amount=amounts.max if amounts else None,
            include_metadata=True,
        )

        results = await asyncio.gather(
            *(self._safe_retrieve(name, user_id, analysis.normalized_query, options) for name in selected)
        )

        priorities = RETRIEVER_PRIORITIES.get(analysis.intent, {})
        valid = sorted(
            ((name, bundle) for name, bundle in zip(selected, results) if bundle is not None),
            key=lambda pair: priorities.get(pair[0], 0),
            reverse=True,
        )
        relevant = [bundle for _, bundle in valid]

        summaries = build_summaries(relevant, analysis.intent)
        trimmed = trim_to_token_budget(relevant, MAX_CONTEXT_TOKENS - CONTEXT_TOKEN_BUFFER)
        token_estimate = estimate_context_tokens(trimmed, summaries)
        processing_ms = (time.monotonic() - start) * 1000

        context = AssembledContext(
            query=analysis.original_query,
            intent=analysis.intent,
            relevant_data=trimmed,
            total_records=sum(b.record_count for b in trimmed),
            date_range=date_range,
            summaries=summaries,
            user_context=UserContext(
                currency="MYR", locale="en-MY", fiscal_year=(today or date.today()).year
            ),
            metadata=ContextMetadata(
                retrievers_used=[name.value for name, _ in valid[: len(trimmed)]],
                processing_time_ms=round(processing_ms, 2),
                token_estimate=token_estimate,
            ),
        )

        logger.info(
            "context_assembled",
            intent=analysis.intent.value,
            selected=[n.value for n in selected],
            used=context.metadata.retrievers_used,
            total_records=context.total_records,
            token_estimate=token_estimate,
        )
        return context

    async def _safe_retrieve(
        self,
        name: RetrieverName,
        user_id: str,
        query: str,
        options: RetrievalOptions,
    ) -> RetrievedData | None:
        try:
            return await asyncio.wait_for(
                self._registry[name].retrieve(user_id, query, options), timeout=self._timeout_s
            )
        except Exception as e:
            logger.warning("retriever_failed", retriever=name.value, error=str(e) or type(e).__name__)
            return None


def format_context_for_llm(context: AssembledContext) -> str:
    sections = [
        f"## User Query\n{context.query}",
        f"## Detected Intent\n{context.intent.value.replace('_', ' ').upper()}",
    ]
    if context.summaries.financial:
        sections.append(f"## Financial Summary\n{context.summaries.financial}")
    if context.summaries.insights:
        sections.append("## Key Insights\n" + "\n".join(f"- {i}" for i in context.summaries.insights))
    if context.summaries.recommendations:
        sections.append(
            "## Recommendations\n" + "\n".join(f"- {r}" for r in context.summaries.recommendations)
        )
    sections.append(f"## Data Sources\n{', '.join(context.metadata.retrievers_used)}")
    dr = context.date_range
    sections.append(f"## Date Range\n{dr.label or f'{dr.start.isoformat()} to {dr.end.isoformat()}'}")

    for bundle in context.relevant_data:
        if bundle.aggregations:
            lines = "\n".join(f"- {key}: {value}" for key, value in bundle.aggregations.items())
            sections.append(f"## {bundle.source.upper()} Data\n{lines}")

    return "\n\n".join(sections)


def merge_contexts(previous: AssembledContext | None, new: AssembledContext) -> AssembledContext:
    """Fold a new turn's context into the previous one; newer bundles replace older ones per source."""
    if previous is None:
        return new

    merged = list(previous.relevant_data)
    for bundle in new.relevant_data:
        idx = next((i for i, b in enumerate(merged) if b.source == bundle.source), None)
        if idx is None:
            merged.append(bundle)
        else:
            merged[idx] = bundle

    insights = list(dict.fromkeys([*previous.summaries.insights, *new.summaries.insights]))
    return replace(
        new,
        relevant_data=merged,
        total_records=sum(b.record_count for b in merged),
        summaries=replace(new.summaries, insights=insights[:MAX_MERGED_INSIGHTS]),
    )


def context_to_dict(context: AssembledContext) -> dict:
    """Fact-bearing part of a context: date range, summaries and bundles (no run metadata)."""
    return {
        "date_range": context.date_range.to_dict(),
        "summaries": {
            "financial": context.summaries.financial,
            "insights": context.summaries.insights,
            "recommendations": context.summaries.recommendations,
        },
        "relevant_data": [b.to_dict() for b in context.relevant_data],
    }
