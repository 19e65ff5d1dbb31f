"""Split broad finance questions into targeted sub-questions."""

from __future__ import annotations

from fin_crag.config.constants import MAX_SUB_QUESTIONS
from fin_crag.generation.prompt_templates import QUERY_DECOMPOSITION_SYSTEM
from fin_crag.generation.structured import chat_structured
from fin_crag.models.llm import ChatOptions
from fin_crag.models.schemas import DecompositionResponse
from fin_crag.observability.logger import get_logger

logger = get_logger("query_decomposition")


class QueryDecomposer:
    def __init__(self, llm=None, max_questions: int = MAX_SUB_QUESTIONS) -> None:
        self._llm = llm
        self.max_questions = max_questions

    async def decompose(self, query: str) -> list[str]:
        if self._llm is None:
            return [query]
        messages = [
            {"role": "system", "content": QUERY_DECOMPOSITION_SYSTEM},
            {"role": "user", "content": query},
        ]
        try:
            parsed = await chat_structured(
                self._llm,
                messages,
                DecompositionResponse,
                ChatOptions(temperature=0.3, max_tokens=300),
            )
        except Exception as e:
            logger.warning("decomposition_failed", error=str(e) or type(e).__name__)
            return [query]

        questions = [q.strip() for q in parsed.questions if q and q.strip()]
        if not questions:
            return [query]
        logger.debug("query_decomposed", count=len(questions))
        return questions[: self.max_questions]
