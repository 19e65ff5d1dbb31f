"""Tests for confidence scoring and reason codes."""

import pytest

from fin_crag.scoring.confidence import ConfidenceScorer
from fin_crag.scoring.reason_codes import ReasonCode


def test_confidence_scorer():
    scorer = ConfidenceScorer()

    # High quality case
    conf = scorer.score(relevance=0.9, hallucination=0.95, intent_confidence=0.95)
    assert conf == pytest.approx(0.35 * 0.9 + 0.45 * 0.95 + 0.20 * 0.95)
    assert conf > 0.5

    # Low quality case
    conf_low = scorer.score(relevance=0.2, hallucination=0.3, intent_confidence=0.5)
    assert conf_low < conf


def test_confidence_scorer_bounds():
    scorer = ConfidenceScorer()

    # Should never exceed 1.0
    assert scorer.score(1.0, 1.0, 1.0) <= 1.0

    # Should never go below 0.0
    assert scorer.score(0.0, 0.0, 0.0) == 0.0


def test_confidence_scorer_clamps_out_of_range_weights():
    scorer = ConfidenceScorer(w_relevance=1.0, w_hallucination=1.0, w_intent=1.0)
    assert scorer.score(1.0, 1.0, 1.0) == 1.0

    negative = ConfidenceScorer(w_relevance=-1.0, w_hallucination=0.0, w_intent=0.0)
    assert negative.score(1.0, 1.0, 1.0) == 0.0


def test_hallucination_weighs_most():
    scorer = ConfidenceScorer()
    grounded = scorer.score(relevance=0.5, hallucination=1.0, intent_confidence=0.5)
    relevant = scorer.score(relevance=1.0, hallucination=0.5, intent_confidence=0.5)
    assert grounded > relevant


def test_reason_codes_serialize_as_strings():
    assert ReasonCode.NO_DATA.value == "NO_DATA"
    assert ReasonCode.HALLUCINATION_DETECTED == "HALLUCINATION_DETECTED"
    assert len({code.value for code in ReasonCode}) == len(ReasonCode)
