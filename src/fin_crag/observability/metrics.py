"""Metric recording helpers for traces."""

from __future__ import annotations

from fin_crag.observability.logger import get_logger

logger = get_logger("metrics")


def log_retrieval_metrics(
    trace_id: str,
    retrievers: list[str],
    total_records: int,
    token_estimate: int,
) -> None:
    logger.info(
        "retrieval_metrics",
        trace_id=trace_id,
        retrievers=retrievers,
        total_records=total_records,
        token_estimate=token_estimate,
    )


def log_grading_metrics(
    trace_id: str,
    relevant: int,
    total: int,
    average_score: float,
    needs_rewrite: bool,
    needs_web_search: bool,
) -> None:
    logger.info(
        "grading_metrics",
        trace_id=trace_id,
        relevant=relevant,
        total=total,
        average_score=round(average_score, 4),
        needs_rewrite=needs_rewrite,
        needs_web_search=needs_web_search,
    )


def log_generation_metrics(
    trace_id: str,
    hallucination_score: float,
    confidence: float,
    regenerated: bool,
    llm_calls: int,
    tokens_used: int,
) -> None:
    logger.info(
        "generation_metrics",
        trace_id=trace_id,
        hallucination_score=round(hallucination_score, 4),
        confidence=round(confidence, 4),
        regenerated=regenerated,
        llm_calls=llm_calls,
        tokens_used=tokens_used,
    )


def log_latency(trace_id: str, stage: str, duration_ms: float) -> None:
    logger.info(
        "latency",
        trace_id=trace_id,
        stage=stage,
        duration_ms=round(duration_ms, 2),
    )
