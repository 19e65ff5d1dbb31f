"""Hallucination check: a numeric quick pass, escalated to an LLM fact-check when not decisive."""

from __future__ import annotations

import json
import re

import numpy as np

from fin_crag.config.constants import (
    AMOUNT_TOLERANCE,
    MAX_CONTEXT_INSIGHTS_FOR_CHECK,
    QUICK_CHECK_ESCALATION_FLOOR,
    SEVERITY_PENALTIES,
    VALIDATION_MAX_TOKENS,
)
from fin_crag.generation.prompt_templates import VALIDATION_PROMPT, VALIDATION_SYSTEM
from fin_crag.generation.structured import chat_structured
from fin_crag.models.domain import (
    AssembledContext,
    HallucinationIssue,
    HallucinationType,
    Severity,
    ValidationResult,
)
from fin_crag.models.llm import ChatOptions
from fin_crag.models.schemas import ValidationAssessment
from fin_crag.observability.logger import get_logger

logger = get_logger("hallucination")

_RESPONSE_AMOUNT = re.compile(
    r"\b(?:RM|MYR)\s*\d[\d,]*(?:\.\d+)?"
    r"|\$\s*\d[\d,]*(?:\.\d+)?"
    r"|\b\d{1,3}(?:,\d{3})*(?:\.\d+)?\s*(?:MYR|ringgit)\b",
    re.I,
)
_PLAIN_NUMBER = re.compile(r"-?\d[\d,]*(?:\.\d+)?")
# Keys whose numeric values are counts, years or identifiers rather than money.
_NON_AMOUNT_KEY = re.compile(r"(?:[Cc]ount|[Yy]ear|[Dd]ate|Id|_id)$|^id$")
_PERCENT = re.compile(r"(\d+(?:\.\d+)?)\s*%")
_SUMMARY_AMOUNT = re.compile(r"RM[\d,]+(?:\.\d{2})?")

TEMPORAL_PHRASES = ("last year", "next year", "yesterday", "tomorrow")


def _to_number(token: str) -> float:
    digits = re.sub(r"[^0-9.]", "", token)
    try:
        return float(digits)
    except ValueError:
        return 0.0


def _collect_amounts(value, found: set[float], key: str = "") -> None:
    if key and _NON_AMOUNT_KEY.search(key):
        return
    if isinstance(value, bool) or value is None:
        return
    if isinstance(value, (int, float)):
        found.add(abs(float(value)))
    elif isinstance(value, str):
        if _PLAIN_NUMBER.fullmatch(value.strip()):
            found.add(abs(_to_number(value)))
        else:
            found.update(_to_number(tok) for tok in _RESPONSE_AMOUNT.findall(value))
    elif isinstance(value, dict):
        for k, v in value.items():
            _collect_amounts(v, found, str(k))
    elif isinstance(value, (list, tuple)):
        for item in value:
            _collect_amounts(item, found)


def context_amounts(context: AssembledContext) -> np.ndarray:
    """Money figures the context actually states.

    Numeric values come from bundle aggregations and records only, so dates,
    record counts and years never ground a response amount. Free text
    (summaries and insights) contributes its currency-qualified tokens.
    """
    found: set[float] = set()
    for bundle in context.relevant_data:
        _collect_amounts(bundle.aggregations, found)
        _collect_amounts(bundle.data, found)
        _collect_amounts(bundle.insights, found)

    summaries = context.summaries
    for text in [summaries.financial, *summaries.insights, *summaries.recommendations]:
        found.update(_to_number(tok) for tok in _RESPONSE_AMOUNT.findall(text or ""))

    return np.array(sorted(found), dtype=float)


def amount_in_context(amount: float, known: np.ndarray) -> bool:
    if amount == 0:
        return True
    candidates = known[known > 0]
    if candidates.size == 0:
        return False
    return bool(np.any(np.abs(amount - candidates) / candidates < AMOUNT_TOLERANCE))


def map_issue_type(raw: str) -> HallucinationType:
    normalized = re.sub(r"\s+", "_", (raw or "").strip().lower())
    try:
        return HallucinationType(normalized)
    except ValueError:
        return HallucinationType.UNSUPPORTED_CLAIM


def penalized_score(issues: list[HallucinationIssue]) -> float:
    score = 1.0 - sum(SEVERITY_PENALTIES[i.severity.value] for i in issues)
    return round(max(0.0, score), 4)


def context_summary(context: AssembledContext) -> str:
    parts = [
        f"Date Range: {context.date_range.label or 'Not specified'}",
        f"Query Intent: {context.intent.value}",
    ]
    if context.summaries.financial:
        parts.append(f"Financial Summary: {context.summaries.financial}")

    for bundle in context.relevant_data:
        lines = [
            f"\nSource: {bundle.source}",
            f"Description: {bundle.description}",
            f"Records: {bundle.record_count}",
        ]
        if bundle.aggregations:
            lines.append("Aggregations:")
            lines.extend(
                f"  - {key}: {json.dumps(value, default=str) if isinstance(value, (dict, list)) else value}"
                for key, value in bundle.aggregations.items()
            )
        if bundle.insights:
            lines.append("Insights:")
            lines.extend(f"  - {i}" for i in bundle.insights[:MAX_CONTEXT_INSIGHTS_FOR_CHECK])
        parts.append("\n".join(lines))

    return "\n".join(parts)


def build_suggestions(issues: list[HallucinationIssue], context: AssembledContext) -> list[str]:
    suggestions: list[str] = []
    kinds = {i.type for i in issues}

    if any(i.severity == Severity.HIGH for i in issues):
        suggestions.append("Regenerate the response using only data from the context")

    if HallucinationType.FABRICATED_DATA in kinds:
        suggestions.append("Use only the exact amounts shown in the financial data")
        if context.relevant_data:
            available = _SUMMARY_AMOUNT.findall(context.summaries.financial)
            if available:
                suggestions.append(f"Available amounts: {', '.join(available)}")

    if HallucinationType.TEMPORAL_ERROR in kinds:
        suggestions.append(f"Stick to the time period: {context.date_range.label}")

    if HallucinationType.WRONG_CALCULATION in kinds:
        suggestions.append("Double-check all percentage calculations")

    if not issues:
        suggestions.append("Response appears well-grounded in the context")

    return suggestions


class HallucinationChecker:
    def __init__(self, llm=None, strict_mode: bool = True, min_acceptable_score: float = 0.7) -> None:
        self._llm = llm
        self.strict_mode = strict_mode
        self.min_acceptable_score = min_acceptable_score

    def quick_validate(self, response: str, context: AssembledContext) -> ValidationResult:
        """Pattern-only pass; deterministic for a given (response, context) pair."""
        issues: list[HallucinationIssue] = []
        lowered = response.lower()

        known = context_amounts(context)
        for token in _RESPONSE_AMOUNT.findall(response):
            if not amount_in_context(_to_number(token), known):
                issues.append(
                    HallucinationIssue(
                        type=HallucinationType.FABRICATED_DATA,
                        severity=Severity.HIGH,
                        claim=f"Amount: {token}",
                        explanation="This amount was not found in the retrieved data",
                    )
                )

        for match in _PERCENT.finditer(response):
            percent = float(match.group(1))
            if percent > 1000 or (percent > 100 and "increase" not in lowered):
                issues.append(
                    HallucinationIssue(
                        type=HallucinationType.WRONG_CALCULATION,
                        severity=Severity.MEDIUM,
                        claim=f"{match.group(1)}%",
                        explanation="Percentage seems unreasonably high",
                    )
                )

        period = (context.date_range.label or "").lower()
        for phrase in TEMPORAL_PHRASES:
            if phrase in lowered and phrase not in period:
                issues.append(
                    HallucinationIssue(
                        type=HallucinationType.TEMPORAL_ERROR,
                        severity=Severity.MEDIUM,
                        claim=f'Reference to "{phrase}"',
                        explanation=f'Context is for "{period}", but response mentions a different period',
                    )
                )

        score = penalized_score(issues)
        has_high = any(i.severity == Severity.HIGH for i in issues)
        return ValidationResult(
            is_valid=not has_high and score >= self.min_acceptable_score,
            overall_score=score,
            issues=issues,
            suggestions=build_suggestions(issues, context),
            grounded_claims=[],
            ungrounded_claims=[i.claim for i in issues],
            llm_checked=False,
        )

    def is_decisive(self, quick: ValidationResult) -> bool:
        has_high = any(i.severity == Severity.HIGH for i in quick.issues)
        return has_high and quick.overall_score < QUICK_CHECK_ESCALATION_FLOOR

    async def validate(self, response: str, context: AssembledContext) -> ValidationResult:
        quick = self.quick_validate(response, context)
        if self._llm is None or self.is_decisive(quick):
            logger.info(
                "hallucination_checked",
                mode="quick",
                score=quick.overall_score,
                issues=len(quick.issues),
                valid=quick.is_valid,
            )
            return quick

        messages = [
            {"role": "system", "content": VALIDATION_SYSTEM},
            {
                "role": "user",
                "content": VALIDATION_PROMPT.format(
                    context_summary=context_summary(context), response=response
                ),
            },
        ]
        try:
            assessment = await chat_structured(
                self._llm,
                messages,
                ValidationAssessment,
                ChatOptions(temperature=0.0, max_tokens=VALIDATION_MAX_TOKENS),
            )
        except Exception as e:
            logger.warning("llm_validation_failed", error=str(e) or type(e).__name__)
            return quick

        issues = [
            HallucinationIssue(
                type=map_issue_type(item.type),
                severity=Severity(item.severity),
                claim=item.claim,
                explanation=item.explanation,
                suggested_fix=item.suggested_fix,
            )
            for item in assessment.issues
        ]
        score = max(0.0, min(1.0, assessment.confidence_score))
        meets_threshold = score >= self.min_acceptable_score
        is_valid = assessment.is_grounded and meets_threshold if self.strict_mode else meets_threshold

        logger.info(
            "hallucination_checked",
            mode="llm",
            score=round(score, 4),
            issues=len(issues),
            valid=is_valid,
        )
        return ValidationResult(
            is_valid=is_valid,
            overall_score=score,
            issues=issues,
            suggestions=build_suggestions(issues, context),
            grounded_claims=assessment.grounded_claims,
            ungrounded_claims=assessment.ungrounded_claims,
            llm_checked=True,
        )
