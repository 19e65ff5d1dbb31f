from enum import Enum


class ReasonCode(str, Enum):
    LOW_RELEVANCE = "LOW_RELEVANCE"
    NO_DATA = "NO_DATA"
    QUERY_REWRITTEN = "QUERY_REWRITTEN"
    REWRITE_REJECTED = "REWRITE_REJECTED"
    WEB_SEARCH_FALLBACK = "WEB_SEARCH_FALLBACK"
    HALLUCINATION_DETECTED = "HALLUCINATION_DETECTED"
    REGENERATED = "REGENERATED"
    GENERATION_FAILED = "GENERATION_FAILED"
    LLM_FATAL_ERROR = "LLM_FATAL_ERROR"
    PIPELINE_ERROR = "PIPELINE_ERROR"
