"""Answer generation from an assembled financial context."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fin_crag.config.constants import MAX_HISTORY_MESSAGES, REGENERATION_TEMPERATURE
from fin_crag.generation.prompt_templates import (
    ANSWER_USER_PROMPT,
    ASSISTANT_SYSTEM,
    CORRECTION_PROMPT,
    FALLBACK_ANSWER_HEADER,
    intent_instructions,
)
from fin_crag.models.domain import AssembledContext, ValidationResult
from fin_crag.models.llm import ChatMessage, ChatOptions, ChatResponse
from fin_crag.observability.logger import get_logger
from fin_crag.protocols.llm import LLMClient
from fin_crag.retrieval.context_assembler import format_context_for_llm
from fin_crag.retrieval.dates import format_currency

logger = get_logger("generation")

MONEY_KEYS = (
    ("totalExpenses", "Total expenses"),
    ("totalIncome", "Total income"),
    ("netCashFlow", "Net cash flow"),
    ("totalBalance", "Credit card balance"),
    ("totalReliefsClaimed", "Tax reliefs claimed"),
)


def build_system_prompt(context: AssembledContext) -> str:
    base = ASSISTANT_SYSTEM.format(
        date_range=context.date_range.label or "Not specified",
        intent=context.intent.value,
        data_sources=", ".join(context.metadata.retrievers_used) or "None",
    )
    return f"{base}\n\n{intent_instructions(context.intent)}"


def build_messages(
    query: str,
    context: AssembledContext,
    history: list[ChatMessage] | None = None,
) -> list[ChatMessage]:
    messages: list[ChatMessage] = [{"role": "system", "content": build_system_prompt(context)}]
    for turn in (history or [])[-MAX_HISTORY_MESSAGES:]:
        if turn.get("role") in ("user", "assistant") and turn.get("content"):
            messages.append({"role": turn["role"], "content": turn["content"]})
    messages.append(
        {
            "role": "user",
            "content": ANSWER_USER_PROMPT.format(
                context_block=format_context_for_llm(context), query=query
            ),
        }
    )
    return messages


def correction_messages(
    messages: list[ChatMessage], previous: str, validation: ValidationResult
) -> list[ChatMessage]:
    issues = "\n".join(f"- {i.type.value}: {i.explanation}" for i in validation.issues) or "- None listed"
    suggestions = "\n".join(f"- {s}" for s in validation.suggestions)
    return [
        *messages,
        {"role": "assistant", "content": previous},
        {"role": "user", "content": CORRECTION_PROMPT.format(issues=issues, suggestions=suggestions)},
    ]


class AnswerGenerator:
    def __init__(self, llm: LLMClient) -> None:
        self._llm = llm

    async def generate(
        self,
        query: str,
        context: AssembledContext,
        history: list[ChatMessage] | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> ChatResponse:
        messages = build_messages(query, context, history)
        response = await self._llm.chat(
            messages, ChatOptions(temperature=temperature, max_tokens=max_tokens)
        )
        logger.info(
            "generated_answer",
            query_len=len(query),
            answer_len=len(response.content),
            tokens=response.usage.total_tokens,
        )
        return response

    async def regenerate(
        self,
        query: str,
        context: AssembledContext,
        previous: str,
        validation: ValidationResult,
        max_tokens: int = 2048,
    ) -> ChatResponse:
        messages = correction_messages(build_messages(query, context), previous, validation)
        response = await self._llm.chat(
            messages, ChatOptions(temperature=REGENERATION_TEMPERATURE, max_tokens=max_tokens)
        )
        logger.info(
            "regenerated_answer",
            issues=len(validation.issues),
            answer_len=len(response.content),
        )
        return response

    async def generate_stream(
        self,
        query: str,
        context: AssembledContext,
        history: list[ChatMessage] | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> AsyncIterator[str]:
        messages = build_messages(query, context, history)
        answer_len = 0
        async for chunk in self._llm.chat_stream(
            messages, ChatOptions(temperature=temperature, max_tokens=max_tokens)
        ):
            if chunk.content:
                answer_len += len(chunk.content)
                yield chunk.content
        logger.info("generated_answer_stream", query_len=len(query), answer_len=answer_len)

    @staticmethod
    def fallback_answer(context: AssembledContext) -> str:
        """Data-only answer used when the LLM cannot produce one."""
        lines = [f"{FALLBACK_ANSWER_HEADER} ({context.date_range.label or 'selected period'}):"]
        if context.summaries.financial:
            lines.append("")
            lines.append(context.summaries.financial)

        metrics: list[str] = []
        for bundle in context.relevant_data:
            for key, label in MONEY_KEYS:
                value = bundle.aggregations.get(key)
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    metrics.append(f"- {label} ({bundle.source}): {format_currency(value)}")
        if metrics:
            lines.append("")
            lines.extend(metrics)

        if context.summaries.insights:
            lines.append("")
            lines.extend(f"- {i}" for i in context.summaries.insights)

        if len(lines) == 1:
            lines.append("")
            lines.append("No financial records were found for this period.")
        return "\n".join(lines)
