"""Tests for relevance grading."""

import re
from dataclasses import replace

import pytest

from fin_crag.models.schemas import RelevanceAssessment
from fin_crag.scoring.relevance import RelevanceGrader, assessment_to_score, document_summary
from fakes import GRADING, FakeLLM

QUERY = "How much did I spend on food this month?"


def test_quick_grade_matches_insights_and_aggregations(transactions_bundle):
    result = RelevanceGrader().quick_grade(transactions_bundle, QUERY)
    assert result.score == pytest.approx(0.5)
    assert result.is_relevant
    assert result.document_source == "transactions"
    assert result.reason.startswith("Heuristic:")


def test_quick_grade_source_keywords(budgets_bundle):
    grader = RelevanceGrader()
    assert grader.quick_grade(budgets_bundle, QUERY).score == pytest.approx(0.1)
    assert grader.quick_grade(budgets_bundle, "Am I within my budget?").score >= 0.5


def test_quick_grade_empty_bundle_scores_zero():
    from fin_crag.models.domain import RetrievedData

    empty = RetrievedData(source="goals", description="Goals", record_count=0)
    result = RelevanceGrader().quick_grade(empty, QUERY)
    assert result.score == 0.0
    assert not result.is_relevant


@pytest.mark.asyncio
async def test_grade_documents_quick(transactions_bundle, budgets_bundle):
    grading = await RelevanceGrader().grade_documents([transactions_bundle, budgets_bundle], QUERY)
    assert grading.relevant_count == 1
    assert grading.total_count == 2
    assert grading.average_score == pytest.approx(0.3)
    assert grading.needs_query_rewrite
    assert not grading.needs_web_search


@pytest.mark.asyncio
async def test_grade_documents_empty_flags_everything():
    grading = await RelevanceGrader().grade_documents([], QUERY)
    assert grading.total_count == 0
    assert grading.average_score == 0.0
    assert grading.needs_query_rewrite
    assert grading.needs_web_search


@pytest.mark.asyncio
async def test_llm_grading(transactions_bundle, budgets_bundle):
    llm = FakeLLM(json_routes={GRADING: {"is_relevant": "yes", "confidence": 0.9, "reasoning": "Matches"}})
    grader = RelevanceGrader(llm=llm)
    assert not grader.quick_mode

    grading = await grader.grade_documents([transactions_bundle, budgets_bundle], QUERY)
    assert grading.relevant_count == 2
    assert grading.average_score == pytest.approx(0.9)
    assert not grading.needs_query_rewrite
    assert grading.documents[0].reason == "Matches"
    assert len(llm.calls) == 2
    assert all(opts.temperature == 0.0 for _, opts in llm.calls)


class ConcurrencyTrackingLLM(FakeLLM):
    """Records how many calls were in flight when each call started."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.in_flight = 0
        self.in_flight_at_start: list[int] = []

    async def chat(self, messages, options=None):
        self.in_flight += 1
        self.in_flight_at_start.append(self.in_flight)
        try:
            return await super().chat(messages, options)
        finally:
            self.in_flight -= 1


def _verdict_by_source(messages):
    source = re.search(r"Document Source: (\w+)", messages[-1]["content"]).group(1)
    if source in {"budgets", "tax", "income"}:
        return {"is_relevant": "no", "confidence": 0.1}
    return {"is_relevant": "yes", "confidence": 0.9}


@pytest.mark.asyncio
async def test_llm_grading_runs_sequential_batches_of_five(transactions_bundle):
    sources = ["transactions", "budgets", "goals", "subscriptions", "credit_cards", "tax", "income"]
    documents = [replace(transactions_bundle, source=s) for s in sources]
    llm = ConcurrencyTrackingLLM(json_routes={GRADING: _verdict_by_source}, delay_s=0.01)

    grading = await RelevanceGrader(llm=llm).grade_documents(documents, QUERY)

    # Five concurrent calls, then the second batch starts from an idle client.
    assert llm.in_flight_at_start == [1, 2, 3, 4, 5, 1, 2]
    assert [r.document_source for r in grading.documents] == sources
    assert [r.is_relevant for r in grading.documents] == [True, False, True, True, True, False, False]
    assert grading.relevant_count == 4
    assert grading.total_count == 7
    assert grading.needs_query_rewrite  # 4/7 is below the 0.7 ratio
    assert not grading.needs_web_search


@pytest.mark.asyncio
async def test_llm_grading_falls_back_to_heuristic(transactions_bundle):
    grader = RelevanceGrader(llm=FakeLLM())  # no structured routes
    result = await grader.grade_document(transactions_bundle, QUERY)
    assert result.reason.startswith("Heuristic:")
    assert result.score == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_quick_mode_never_calls_llm(transactions_bundle):
    llm = FakeLLM()
    await RelevanceGrader(llm=llm, quick_mode=True).grade_documents([transactions_bundle], QUERY)
    assert llm.calls == []


@pytest.mark.parametrize(
    "verdict,confidence,expected",
    [
        ("yes", 0.9, 0.9),
        ("yes", 0.2, 0.7),
        ("partial", 0.2, 0.4),
        ("partial", 0.9, 0.7),
        ("no", 0.9, 0.3),
        ("no", 0.1, 0.1),
    ],
)
def test_assessment_to_score(verdict, confidence, expected):
    assessment = RelevanceAssessment(is_relevant=verdict, confidence=confidence)
    assert assessment_to_score(assessment) == pytest.approx(expected)


def test_document_summary(transactions_bundle):
    summary = document_summary(transactions_bundle)
    assert summary.startswith("Key Metrics:\ntotalExpenses: 2140.75")
    assert "Insights:\nFood is your largest" in summary
    assert "Sample Data (3 of 3)" in summary
