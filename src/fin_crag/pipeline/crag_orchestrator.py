"""Corrective RAG orchestrator: the online path from question to grounded, scored answer."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Mapping
from dataclasses import asdict, replace
from datetime import date

from fin_crag.config.constants import (
    MAX_REGENERATIONS,
    STREAM_CHUNK_SIZE,
    WEB_SEARCH_RELEVANCE_FLOOR,
)
from fin_crag.config.settings import CRAGConfig
from fin_crag.exceptions import LLMClientError
from fin_crag.generation.answer_generator import AnswerGenerator
from fin_crag.generation.prompt_templates import ERROR_RESPONSE, LOW_DATA_WARNING
from fin_crag.models.domain import (
    AggregatedGradingResult,
    AssembledContext,
    CRAGMetadata,
    CRAGResponse,
    QueryAnalysis,
    QueryRewriteResult,
)
from fin_crag.models.llm import ChatMessage
from fin_crag.observability.logger import get_logger
from fin_crag.observability.metrics import (
    log_generation_metrics,
    log_grading_metrics,
    log_latency,
    log_retrieval_metrics,
)
from fin_crag.observability.tracing import TraceContext
from fin_crag.pipeline.metering import LLMCallMeter
from fin_crag.protocols.llm import LLMClient
from fin_crag.query.rewriter import QueryRewriter, RewriteContext
from fin_crag.query.understanding import classify_intent, normalize_query, suggested_retrievers
from fin_crag.retrieval.context_assembler import ContextAssembler
from fin_crag.scoring.confidence import ConfidenceScorer
from fin_crag.scoring.reason_codes import ReasonCode
from fin_crag.scoring.relevance import RelevanceGrader
from fin_crag.verification.hallucination import HallucinationChecker

logger = get_logger("crag_orchestrator")


def metadata_to_dict(metadata: CRAGMetadata) -> dict:
    data = asdict(metadata)
    data["intent"] = metadata.intent.value
    return data


class CRAGOrchestrator:
    def __init__(
        self,
        llm: LLMClient,
        assembler: ContextAssembler,
        config: CRAGConfig | None = None,
        confidence_scorer: ConfidenceScorer | None = None,
    ) -> None:
        self._llm = llm
        self._assembler = assembler
        self._config = config or CRAGConfig()
        self._confidence = confidence_scorer or ConfidenceScorer()

    @property
    def config(self) -> CRAGConfig:
        return self._config

    @property
    def llm(self) -> LLMClient:
        return self._llm

    @property
    def assembler(self) -> ContextAssembler:
        return self._assembler

    async def process(
        self,
        query: str,
        user_id: str,
        conversation_history: list[ChatMessage] | None = None,
        permissions: Mapping[str, bool] | None = None,
        cancel_event: asyncio.Event | None = None,
        today: date | None = None,
    ) -> CRAGResponse:
        trace = TraceContext()
        metadata = CRAGMetadata(original_query=query, processed_query=query, hallucination_score=1.0)
        meter = LLMCallMeter(self._llm, timeout_s=self._config.llm_timeout_s, cancel_event=cancel_event)

        try:
            content = await self._run(
                query, user_id, conversation_history, permissions, today, trace, meter, metadata
            )
        except Exception as e:
            logger.error(
                "crag_pipeline_failed",
                trace_id=trace.trace_id,
                error=str(e) or type(e).__name__,
                exc_info=True,
            )
            content = ERROR_RESPONSE
            metadata.confidence_score = 0.0
            metadata.error = metadata.error or f"pipeline_error: {type(e).__name__}"
            metadata.reasons.append(ReasonCode.PIPELINE_ERROR.value)

        metadata.llm_calls = meter.calls
        metadata.tokens_used = meter.tokens
        if metadata.error is None:
            metadata.error = meter.error
        if meter.error is not None and ReasonCode.LLM_FATAL_ERROR.value not in metadata.reasons:
            metadata.reasons.append(ReasonCode.LLM_FATAL_ERROR.value)
        metadata.stage_timings = trace.stage_timings()
        metadata.total_latency_ms = round(trace.elapsed_ms, 2)

        log_generation_metrics(
            trace.trace_id,
            metadata.hallucination_score,
            metadata.confidence_score,
            metadata.regenerated,
            metadata.llm_calls,
            metadata.tokens_used,
        )
        log_latency(trace.trace_id, "total", metadata.total_latency_ms)
        return CRAGResponse(content=content, metadata=metadata)

    async def _run(
        self,
        query: str,
        user_id: str,
        history: list[ChatMessage] | None,
        permissions: Mapping[str, bool] | None,
        today: date | None,
        trace: TraceContext,
        meter: LLMCallMeter,
        metadata: CRAGMetadata,
    ) -> str:
        cfg = self._config

        # STEP 1: Intent classification
        with trace.span("classify"):
            analysis = classify_intent(query, today=today)
        metadata.intent = analysis.intent
        metadata.intent_confidence = analysis.confidence
        metadata.processed_query = analysis.normalized_query

        # STEP 2: Retrieval
        with trace.span("retrieve"):
            context = await self._assembler.assemble(user_id, analysis, permissions, today=today)
        self._record_context(context, metadata, trace.trace_id)
        if not context.relevant_data:
            metadata.reasons.append(ReasonCode.NO_DATA.value)

        # STEP 3: Relevance grading
        meter.set_limit("grading", 0 if cfg.use_quick_grading else len(context.relevant_data))
        grader = RelevanceGrader(
            llm=meter.stage("grading"),
            min_relevance_score=cfg.min_relevance_score,
            min_relevant_ratio=cfg.relevance_threshold,
            web_search_threshold=cfg.web_search_threshold,
            quick_mode=cfg.use_quick_grading,
        )
        with trace.span("grade"):
            grading = await grader.grade_documents(context.relevant_data, query)
        self._record_grading(grading, metadata, trace.trace_id)
        if grading.needs_query_rewrite:
            metadata.reasons.append(ReasonCode.LOW_RELEVANCE.value)

        # STEP 4: Rewrite, re-retrieve and re-grade
        if grading.needs_query_rewrite and cfg.enable_query_rewrite:
            with trace.span("rewrite"):
                rewrite = await QueryRewriter(meter.stage("rewrite")).rewrite(
                    query,
                    RewriteContext(
                        previous_queries=[t["content"] for t in (history or []) if t.get("role") == "user"],
                        intent=analysis.intent,
                        failed_retrieval_reason=(
                            f"Low relevance scores ({grading.relevant_count}/{grading.total_count} relevant)"
                        ),
                        available_sources=context.metadata.retrievers_used,
                    ),
                )
            if rewrite.confidence > analysis.confidence:
                analysis = self._refine(analysis, rewrite)
                metadata.query_rewritten = True
                metadata.processed_query = rewrite.rewritten_query
                metadata.intent = analysis.intent
                metadata.intent_confidence = analysis.confidence
                metadata.reasons.append(ReasonCode.QUERY_REWRITTEN.value)

                with trace.span("retrieve"):
                    context = await self._assembler.assemble(user_id, analysis, permissions, today=today)
                self._record_context(context, metadata, trace.trace_id)
                with trace.span("grade"):
                    regrade = await grader.grade_documents(context.relevant_data, rewrite.rewritten_query)
                self._record_grading(regrade, metadata, trace.trace_id)
            else:
                metadata.reasons.append(ReasonCode.REWRITE_REJECTED.value)
                logger.info(
                    "rewrite_rejected",
                    rewrite_confidence=round(rewrite.confidence, 4),
                    intent_confidence=round(analysis.confidence, 4),
                )

        # STEP 5: Web search fallback annotation
        if (
            cfg.enable_web_search
            and grading.needs_web_search
            and metadata.relevance_score < WEB_SEARCH_RELEVANCE_FLOOR
        ):
            metadata.web_search_used = True
            metadata.reasons.append(ReasonCode.WEB_SEARCH_FALLBACK.value)
            context.summaries.insights.append(LOW_DATA_WARNING)

        # STEP 6: Generation
        generator = AnswerGenerator(meter.stage("generate"))
        try:
            with trace.span("generate"):
                response = await generator.generate(
                    query,
                    context,
                    history,
                    temperature=cfg.temperature,
                    max_tokens=cfg.max_tokens,
                )
            answer = response.content
        except Exception as e:
            logger.warning("generation_failed", error=str(e) or type(e).__name__)
            metadata.error = metadata.error or _describe(e)
            metadata.fallback_answer = True
            metadata.confidence_score = 0.0
            metadata.reasons.append(ReasonCode.GENERATION_FAILED.value)
            return AnswerGenerator.fallback_answer(context)

        # STEP 7: Hallucination check with bounded regeneration
        if cfg.enable_hallucination_check:
            answer = await self._verify(query, context, answer, meter, trace, metadata)

        # STEP 8: Final confidence
        metadata.confidence_score = self._confidence.score(
            metadata.relevance_score, metadata.hallucination_score, metadata.intent_confidence
        )
        logger.info(
            "crag_completed",
            trace_id=trace.trace_id,
            intent=metadata.intent.value,
            confidence=round(metadata.confidence_score, 4),
            rewritten=metadata.query_rewritten,
            regenerated=metadata.regenerated,
        )
        return answer

    async def _verify(
        self,
        query: str,
        context: AssembledContext,
        answer: str,
        meter: LLMCallMeter,
        trace: TraceContext,
        metadata: CRAGMetadata,
    ) -> str:
        cfg = self._config

        def checker(stage: str) -> HallucinationChecker:
            return HallucinationChecker(
                meter.stage(stage),
                strict_mode=cfg.strict_validation,
                min_acceptable_score=cfg.hallucination_threshold,
            )

        with trace.span("check"):
            validation = await checker("check").validate(answer, context)
        metadata.hallucination_score = validation.overall_score
        if not validation.is_valid:
            metadata.reasons.append(ReasonCode.HALLUCINATION_DETECTED.value)

        retries_left = min(cfg.max_retries, MAX_REGENERATIONS)
        while retries_left > 0 and not validation.is_valid and validation.suggestions:
            retries_left -= 1
            try:
                with trace.span("regenerate"):
                    regenerated = await AnswerGenerator(meter.stage("regenerate")).regenerate(
                        query, context, answer, validation, max_tokens=cfg.max_tokens
                    )
            except Exception as e:
                logger.warning("regeneration_failed", error=str(e) or type(e).__name__)
                break

            answer = regenerated.content
            metadata.regenerated = True
            metadata.reasons.append(ReasonCode.REGENERATED.value)
            with trace.span("recheck"):
                validation = await checker("recheck").validate(answer, context)
            metadata.hallucination_score = validation.overall_score

        return answer

    def _refine(self, analysis: QueryAnalysis, rewrite: QueryRewriteResult) -> QueryAnalysis:
        """Widened copy of the analysis carrying the rewritten query and its intent."""
        return replace(
            analysis,
            normalized_query=normalize_query(rewrite.rewritten_query),
            intent=rewrite.intent,
            confidence=rewrite.confidence,
            suggested_retrievers=suggested_retrievers(rewrite.intent),
        )

    def _record_context(self, context: AssembledContext, metadata: CRAGMetadata, trace_id: str) -> None:
        metadata.data_sources = list(context.metadata.retrievers_used)
        metadata.documents_retrieved = len(context.relevant_data)
        log_retrieval_metrics(
            trace_id,
            context.metadata.retrievers_used,
            context.total_records,
            context.metadata.token_estimate,
        )

    def _record_grading(
        self, grading: AggregatedGradingResult, metadata: CRAGMetadata, trace_id: str
    ) -> None:
        metadata.documents_relevant = grading.relevant_count
        metadata.relevance_score = grading.average_score
        log_grading_metrics(
            trace_id,
            grading.relevant_count,
            grading.total_count,
            grading.average_score,
            grading.needs_query_rewrite,
            grading.needs_web_search,
        )

    async def process_stream(
        self,
        query: str,
        user_id: str,
        conversation_history: list[ChatMessage] | None = None,
        permissions: Mapping[str, bool] | None = None,
        cancel_event: asyncio.Event | None = None,
        today: date | None = None,
    ) -> AsyncGenerator[dict, None]:
        """Yield start, token, metadata and done events for one query."""
        yield {"event": "start", "data": {"query": query}}
        result = await self.process(
            query,
            user_id,
            conversation_history=conversation_history,
            permissions=permissions,
            cancel_event=cancel_event,
            today=today,
        )
        for i in range(0, len(result.content), STREAM_CHUNK_SIZE):
            yield {"event": "token", "data": result.content[i : i + STREAM_CHUNK_SIZE]}
        yield {"event": "metadata", "data": metadata_to_dict(result.metadata)}
        yield {"event": "done", "data": {}}


def _describe(error: Exception) -> str:
    if isinstance(error, LLMClientError):
        return f"{error.code}: {error}"
    return f"generation_error: {str(error) or type(error).__name__}"
