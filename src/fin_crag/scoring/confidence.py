"""Final confidence: CONF = w_rel*relevance + w_hall*hallucination + w_intent*intent."""

from __future__ import annotations

import numpy as np

from fin_crag.config.constants import (
    CONF_W_HALLUCINATION,
    CONF_W_INTENT,
    CONF_W_RELEVANCE,
)


class ConfidenceScorer:
    def __init__(
        self,
        w_relevance: float = CONF_W_RELEVANCE,
        w_hallucination: float = CONF_W_HALLUCINATION,
        w_intent: float = CONF_W_INTENT,
    ) -> None:
        self._weights = np.array([w_relevance, w_hallucination, w_intent])

    def score(self, relevance: float, hallucination: float, intent_confidence: float) -> float:
        conf = float(np.dot(self._weights, [relevance, hallucination, intent_confidence]))
        return max(0.0, min(1.0, conf))
