"""Rule-based intent classification and entity extraction for finance queries."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, replace
from datetime import date

from fin_crag.config.constants import MAX_INTENT_CONFIDENCE, NEUTRAL_INTENT_CONFIDENCE
from fin_crag.models.domain import (
    AmountRange,
    DateRange,
    QueryAnalysis,
    QueryEntities,
    QueryIntent,
    RetrieverName,
)
from fin_crag.observability.logger import get_logger
from fin_crag.retrieval.dates import date_range_preset, month_range

logger = get_logger("query_understanding")


@dataclass(frozen=True)
class IntentPattern:
    keywords: tuple[str, ...]
    phrases: tuple[str, ...]
    weight: float


# Iteration order follows QueryIntent declaration order.
INTENT_PATTERNS: dict[QueryIntent, IntentPattern] = {
    QueryIntent.TAX_OPTIMIZATION: IntentPattern(
        keywords=(
            "tax", "lhdn", "relief", "deduction", "pcb", "claim", "filing",
            "refund", "assessment", "ya", "cukai", "pelepasan", "rebate",
            "epf", "kwsp", "socso", "perkeso", "eis", "zakat", "education relief",
            "medical relief", "insurance relief", "lifestyle relief",
        ),
        phrases=(
            "save on tax", "tax savings", "maximize deductions", "tax return",
            "how much tax", "reduce tax", "tax-deductible", "claim relief",
            "tax bracket", "income tax", "annual assessment",
        ),
        weight=1.5,
    ),
    QueryIntent.SPENDING_ANALYSIS: IntentPattern(
        keywords=(
            "spending", "spent", "expense", "expenses", "where", "money",
            "category", "breakdown", "pattern", "trend", "overspend",
            "perbelanjaan", "belanja", "habis", "duit",
        ),
        phrases=(
            "where did", "how much did i spend", "spending too much",
            "top expenses", "biggest expense", "money going", "spending habits",
            "spending pattern", "analyze spending", "review expenses",
        ),
        weight=1.2,
    ),
    QueryIntent.BUDGET_REVIEW: IntentPattern(
        keywords=(
            "budget", "limit", "allocation", "over", "under", "within",
            "bajet", "allocate", "allowance", "cap", "threshold",
        ),
        phrases=(
            "on track", "over budget", "under budget", "budget status",
            "how is my budget", "budget utilization", "set budget",
            "budget vs actual", "staying within budget",
        ),
        weight=1.2,
    ),
    QueryIntent.GOAL_PROGRESS: IntentPattern(
        keywords=(
            "goal", "goals", "target", "saving", "savings", "progress",
            "matlamat", "simpanan", "achieve", "reach", "milestone",
        ),
        phrases=(
            "on track", "how am i doing", "goal progress", "reach my goal",
            "savings goal", "achieve my", "when will i", "how long until",
            "target amount", "save for",
        ),
        weight=1.3,
    ),
    QueryIntent.SUBSCRIPTION_REVIEW: IntentPattern(
        keywords=(
            "subscription", "subscriptions", "recurring", "monthly", "cancel",
            "langganan", "netflix", "spotify", "gym", "membership", "service",
        ),
        phrases=(
            "cancel subscription", "unused subscription", "too many subscriptions",
            "subscription audit", "how much on subscriptions", "recurring payments",
            "wasting money on", "not using",
        ),
        weight=1.3,
    ),
    QueryIntent.CREDIT_CARD_ADVICE: IntentPattern(
        keywords=(
            "credit", "card", "credit card", "utilization", "limit", "payment",
            "due", "balance", "cashback", "rewards", "points", "miles",
            "visa", "mastercard", "amex",
        ),
        phrases=(
            "credit card", "best card", "card to use", "credit utilization",
            "pay off card", "credit limit", "which card", "card rewards",
            "card payment due", "credit score",
        ),
        weight=1.4,
    ),
    QueryIntent.INCOME_ANALYSIS: IntentPattern(
        keywords=(
            "income", "salary", "earning", "earned", "bonus", "freelance",
            "pendapatan", "gaji", "commission", "revenue", "paycheck",
        ),
        phrases=(
            "how much am i earning", "income trend", "salary increase",
            "total income", "income sources", "making enough", "income vs expense",
            "net income", "gross income",
        ),
        weight=1.2,
    ),
    QueryIntent.FORECAST_REVIEW: IntentPattern(
        keywords=(
            "forecast", "predict", "prediction", "future", "next month",
            "projection", "expect", "estimate", "anticipate",
        ),
        phrases=(
            "what will i spend", "next month spending", "projected expenses",
            "how much will", "spending forecast", "predict my", "future spending",
            "end of month", "expecting to spend",
        ),
        weight=1.3,
    ),
    QueryIntent.COMPARISON: IntentPattern(
        keywords=(
            "compare", "comparison", "versus", "vs", "difference", "between",
            "more", "less", "higher", "lower", "increase", "decrease",
        ),
        phrases=(
            "compared to", "last month", "this month vs", "year over year",
            "month over month", "how does", "better or worse", "change from",
        ),
        weight=1.1,
    ),
    QueryIntent.ANOMALY_DETECTION: IntentPattern(
        keywords=(
            "unusual", "strange", "unexpected", "suspicious", "fraud", "wrong",
            "error", "mistake", "duplicate", "weird", "odd",
        ),
        phrases=(
            "something wrong", "doesn't look right", "unusual spending",
            "strange transaction", "didn't recognize", "unexpected charge",
            "fraud detection", "suspicious activity",
        ),
        weight=1.4,
    ),
    QueryIntent.GENERAL_ADVICE: IntentPattern(
        keywords=(
            "advice", "help", "suggest", "recommend", "improve", "better",
            "tips", "strategy", "plan", "optimize", "should",
        ),
        phrases=(
            "what should i", "how can i", "any suggestions", "help me",
            "give me advice", "what do you recommend", "best way to",
            "how to improve", "financial advice",
        ),
        weight=1.0,
    ),
}

SUGGESTED_RETRIEVERS: dict[QueryIntent, tuple[RetrieverName, ...]] = {
    QueryIntent.TAX_OPTIMIZATION: (RetrieverName.TAX, RetrieverName.TRANSACTIONS, RetrieverName.INCOME),
    QueryIntent.SPENDING_ANALYSIS: (RetrieverName.TRANSACTIONS, RetrieverName.BUDGETS, RetrieverName.FORECASTS),
    QueryIntent.BUDGET_REVIEW: (RetrieverName.BUDGETS, RetrieverName.TRANSACTIONS),
    QueryIntent.GOAL_PROGRESS: (RetrieverName.GOALS, RetrieverName.TRANSACTIONS, RetrieverName.INCOME),
    QueryIntent.SUBSCRIPTION_REVIEW: (RetrieverName.SUBSCRIPTIONS, RetrieverName.TRANSACTIONS),
    QueryIntent.CREDIT_CARD_ADVICE: (RetrieverName.CREDIT_CARDS, RetrieverName.TRANSACTIONS),
    QueryIntent.INCOME_ANALYSIS: (RetrieverName.INCOME, RetrieverName.TRANSACTIONS, RetrieverName.TAX),
    QueryIntent.FORECAST_REVIEW: (RetrieverName.FORECASTS, RetrieverName.TRANSACTIONS, RetrieverName.BUDGETS),
    QueryIntent.COMPARISON: (RetrieverName.TRANSACTIONS, RetrieverName.BUDGETS, RetrieverName.INCOME),
    QueryIntent.ANOMALY_DETECTION: (RetrieverName.TRANSACTIONS, RetrieverName.FORECASTS),
    QueryIntent.GENERAL_ADVICE: (
        RetrieverName.TRANSACTIONS,
        RetrieverName.BUDGETS,
        RetrieverName.GOALS,
        RetrieverName.INCOME,
    ),
}

INTENT_EXPANSIONS: dict[QueryIntent, tuple[str, ...]] = {
    QueryIntent.TAX_OPTIMIZATION: (
        "LHDN relief categories",
        "tax deductions for the year",
        "PCB monthly tax deduction",
    ),
    QueryIntent.SPENDING_ANALYSIS: (
        "expense breakdown by category",
        "transaction history",
        "spending patterns",
    ),
    QueryIntent.BUDGET_REVIEW: ("budget utilization", "spending vs budget", "category budgets"),
    QueryIntent.GOAL_PROGRESS: ("savings goals progress", "target amounts", "goal deadlines"),
    QueryIntent.SUBSCRIPTION_REVIEW: (
        "recurring payments",
        "subscription costs",
        "active subscriptions",
    ),
    QueryIntent.CREDIT_CARD_ADVICE: (
        "credit card utilization",
        "card spending patterns",
        "payment due dates",
    ),
    QueryIntent.INCOME_ANALYSIS: ("income sources", "salary and bonuses", "income trends"),
    QueryIntent.FORECAST_REVIEW: (
        "spending predictions",
        "projected expenses",
        "budget projections",
    ),
}

# First match wins, in this order.
DATE_PATTERNS: tuple[tuple[str, re.Pattern], ...] = (
    ("today", re.compile(r"\b(today|hari ini)\b", re.I)),
    ("yesterday", re.compile(r"\b(yesterday|semalam)\b", re.I)),
    ("this_week", re.compile(r"\b(this week|minggu ini)\b", re.I)),
    ("last_week", re.compile(r"\b(last week|minggu lepas)\b", re.I)),
    ("this_month", re.compile(r"\b(this month|bulan ini|current month)\b", re.I)),
    ("last_month", re.compile(r"\b(last month|bulan lepas|previous month)\b", re.I)),
    ("this_quarter", re.compile(r"\b(this quarter|q[1-4])\b", re.I)),
    ("this_year", re.compile(r"\b(this year|tahun ini)\b", re.I)),
    ("last_year", re.compile(r"\b(last year|tahun lepas)\b", re.I)),
    ("ytd", re.compile(r"\b(ytd|year to date|year-to-date)\b", re.I)),
)

MONTH_PATTERNS: tuple[tuple[re.Pattern, int], ...] = (
    (re.compile(r"\b(january|jan|januari)\b", re.I), 1),
    (re.compile(r"\b(february|feb|februari)\b", re.I), 2),
    (re.compile(r"\b(march|mar|mac)\b", re.I), 3),
    (re.compile(r"\b(april|apr)\b", re.I), 4),
    (re.compile(r"\b(may|mei)\b", re.I), 5),
    (re.compile(r"\b(june|jun)\b", re.I), 6),
    (re.compile(r"\b(july|jul|julai)\b", re.I), 7),
    (re.compile(r"\b(august|aug|ogos)\b", re.I), 8),
    (re.compile(r"\b(september|sep)\b", re.I), 9),
    (re.compile(r"\b(october|oct|oktober)\b", re.I), 10),
    (re.compile(r"\b(november|nov)\b", re.I), 11),
    (re.compile(r"\b(december|dec|disember)\b", re.I), 12),
)

_CURRENCY = r"(?:rm|myr|\$)?\s*"
AMOUNT_RANGE = re.compile(
    rf"(?:between|from)\s*{_CURRENCY}([\d,]+(?:\.\d+)?)\s*(?:to|and|-)\s*{_CURRENCY}([\d,]+(?:\.\d+)?)",
    re.I,
)
AMOUNT_OVER = re.compile(
    rf"(?:over|more than|above|exceeding|greater than)\s*{_CURRENCY}([\d,]+(?:\.\d+)?)", re.I
)
AMOUNT_UNDER = re.compile(rf"(?:under|less than|below)\s*{_CURRENCY}([\d,]+(?:\.\d+)?)", re.I)
YEAR_PATTERN = re.compile(r"\b(20\d{2})\b")

CATEGORY_PATTERNS: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\b(food|makan|f&b|restaurant|groceries|grocery)\b", re.I), "Food & Dining"),
    (re.compile(r"\b(transport|transportation|petrol|gas|fuel|grab|mrt|lrt|bus)\b", re.I), "Transport"),
    (re.compile(r"\b(shopping|retail|clothes|clothing)\b", re.I), "Shopping"),
    (re.compile(r"\b(entertainment|movie|netflix|spotify|gaming)\b", re.I), "Entertainment"),
    (re.compile(r"\b(utilities|electricity|water|internet|phone|telco)\b", re.I), "Utilities"),
    (re.compile(r"\b(health|medical|doctor|hospital|pharmacy|medicine)\b", re.I), "Healthcare"),
    (re.compile(r"\b(education|course|tuition|books|school|university)\b", re.I), "Education"),
    (re.compile(r"\b(insurance|life insurance|car insurance|health insurance)\b", re.I), "Insurance"),
    (re.compile(r"\b(rent|rental|housing|mortgage)\b", re.I), "Housing"),
    (re.compile(r"\b(travel|vacation|holiday|hotel|flight)\b", re.I), "Travel"),
)

TIMEFRAME_PATTERNS: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\b(day|daily|today)\b", re.I), "day"),
    (re.compile(r"\b(week|weekly)\b", re.I), "week"),
    (re.compile(r"\b(month|monthly)\b", re.I), "month"),
    (re.compile(r"\b(quarter|quarterly)\b", re.I), "quarter"),
    (re.compile(r"\b(year|yearly|annual)\b", re.I), "year"),
)

COMPARISON_PATTERN = re.compile(r"\b(compare|versus|vs|compared to|difference)\b", re.I)

CLARIFYING_PATTERNS = (
    re.compile(r"^(what|who|how|why|when|where|which)\s+(is|are|do|does|did|was|were)\s+", re.I),
    re.compile(r"^can you explain", re.I),
    re.compile(r"^tell me (about|more)", re.I),
    re.compile(r"^define\s+", re.I),
)


def normalize_query(text: str) -> str:
    text = unicodedata.normalize("NFKC", text)
    return re.sub(r"\s+", " ", text).strip().lower()


def score_intents(normalized_query: str) -> dict[QueryIntent, float]:
    scores: dict[QueryIntent, float] = {}
    for intent, pattern in INTENT_PATTERNS.items():
        score = 0.0
        for keyword in pattern.keywords:
            if keyword in normalized_query:
                score += 1 * pattern.weight
        for phrase in pattern.phrases:
            if phrase in normalized_query:
                score += 2 * pattern.weight
        scores[intent] = score
    return scores


def classify_intent(query: str, today: date | None = None) -> QueryAnalysis:
    """Classify a raw query. Pure and deterministic for a given ``today``."""
    normalized = normalize_query(query)
    scores = score_intents(normalized)

    best_intent = QueryIntent.GENERAL_ADVICE
    best_score = 0.0
    for intent, score in scores.items():
        # Strict comparison keeps the earliest-declared intent on ties.
        if score > best_score:
            best_intent, best_score = intent, score

    total = sum(scores.values())
    confidence = best_score / total if total > 0 else NEUTRAL_INTENT_CONFIDENCE
    confidence = min(confidence, MAX_INTENT_CONFIDENCE)

    entities = extract_entities(normalized, today=today)

    logger.info(
        "intent_classified",
        intent=best_intent.value,
        confidence=round(confidence, 4),
        has_date_range=entities.date_range is not None,
        categories=list(entities.categories),
    )

    return QueryAnalysis(
        original_query=query,
        normalized_query=normalized,
        intent=best_intent,
        confidence=confidence,
        entities=entities,
        suggested_retrievers=suggested_retrievers(best_intent),
    )


def extract_entities(query: str, today: date | None = None) -> QueryEntities:
    today = today or date.today()
    return QueryEntities(
        date_range=_extract_date_range(query, today),
        categories=tuple(
            category for pattern, category in CATEGORY_PATTERNS if pattern.search(query)
        ),
        amounts=_extract_amounts(query),
        timeframe=next(
            (frame for pattern, frame in TIMEFRAME_PATTERNS if pattern.search(query)), None
        ),
        comparison=bool(COMPARISON_PATTERN.search(query)),
    )


def _extract_date_range(query: str, today: date) -> DateRange | None:
    for preset, pattern in DATE_PATTERNS:
        if pattern.search(query):
            return date_range_preset(preset, today)

    # A bare mention of the current year means this year.
    if re.search(rf"\b{today.year}\b", query) and not any(
        p.search(query) for p, _ in MONTH_PATTERNS
    ):
        return date_range_preset("this_year", today)

    for pattern, month in MONTH_PATTERNS:
        if pattern.search(query):
            year_match = YEAR_PATTERN.search(query)
            year = int(year_match.group(1)) if year_match else today.year
            return month_range(year, month)
    return None


def _parse_amount(raw: str) -> float:
    return float(raw.replace(",", ""))


def _extract_amounts(query: str) -> AmountRange | None:
    range_match = AMOUNT_RANGE.search(query)
    if range_match:
        return AmountRange(
            min=_parse_amount(range_match.group(1)), max=_parse_amount(range_match.group(2))
        )

    over = AMOUNT_OVER.search(query)
    under = AMOUNT_UNDER.search(query)
    if not over and not under:
        return None
    return AmountRange(
        min=_parse_amount(over.group(1)) if over else None,
        max=_parse_amount(under.group(1)) if under else None,
    )


def suggested_retrievers(intent: QueryIntent) -> tuple[RetrieverName, ...]:
    return SUGGESTED_RETRIEVERS.get(intent, (RetrieverName.TRANSACTIONS,))


def refine_intent(analysis: QueryAnalysis, retrieved_summary: str) -> QueryAnalysis:
    """Widen a low-confidence general classification using what the data talks about."""
    if analysis.confidence >= 0.6 or analysis.intent != QueryIntent.GENERAL_ADVICE:
        return analysis
    summary = retrieved_summary.lower()
    if "tax" in summary or "relief" in summary:
        return replace(
            analysis,
            intent=QueryIntent.TAX_OPTIMIZATION,
            confidence=0.7,
            suggested_retrievers=suggested_retrievers(QueryIntent.TAX_OPTIMIZATION),
        )
    return analysis


def is_clarifying_question(query: str) -> bool:
    """Short definition or explanation questions that need no personal data."""
    stripped = query.strip()
    if len(stripped.split(" ")) >= 8:
        return False
    return any(pattern.search(stripped) for pattern in CLARIFYING_PATTERNS)


def expand_query(query: str, intent: QueryIntent) -> list[str]:
    return [query, *INTENT_EXPANSIONS.get(intent, ())]
