"""Fixed pipeline constants that are not meant to be tuned per deployment."""

# Intent classification
MAX_INTENT_CONFIDENCE = 0.95
NEUTRAL_INTENT_CONFIDENCE = 0.5

# Context assembly
MAX_CONTEXT_TOKENS = 8000
CONTEXT_TOKEN_BUFFER = 500
MIN_TRIMMED_SOURCE_TOKENS = 500
MAX_RETRIEVERS_PER_QUERY = 5
BASE_RETRIEVAL_LIMIT = 100
MAX_SUMMARY_INSIGHTS = 10
MAX_SUMMARY_RECOMMENDATIONS = 5
MAX_MERGED_INSIGHTS = 15
TIKTOKEN_ENCODING = "cl100k_base"

# Relevance grading
GRADING_BATCH_SIZE = 5
GRADING_MAX_TOKENS = 500
GRADING_SUMMARY_AGGREGATIONS = 10
GRADING_SUMMARY_INSIGHTS = 5
GRADING_SAMPLE_RECORDS = 3

# Query rewriting
HEURISTIC_REWRITE_ACCEPT = 0.8
HEURISTIC_BASE_CONFIDENCE = 0.5
TIME_QUALIFIER_BONUS = 0.1
ABBREVIATION_BONUS = 0.15
INTENT_KEYWORD_BONUS = 0.1
MAX_REWRITE_CONFIDENCE = 0.95
REWRITE_TEMPERATURE = 0.3
REWRITE_MAX_TOKENS = 500
MAX_SUB_QUESTIONS = 5

# Hallucination checking
AMOUNT_TOLERANCE = 0.01
SEVERITY_PENALTIES = {"high": 0.3, "medium": 0.15, "low": 0.05}
QUICK_CHECK_ESCALATION_FLOOR = 0.5
VALIDATION_MAX_TOKENS = 1000
MAX_CONTEXT_INSIGHTS_FOR_CHECK = 5

# Orchestration
WEB_SEARCH_RELEVANCE_FLOOR = 0.3
REGENERATION_TEMPERATURE = 0.3
MAX_REGENERATIONS = 1
MAX_HISTORY_MESSAGES = 10
STREAM_CHUNK_SIZE = 20

# Final confidence blend
CONF_W_RELEVANCE = 0.35
CONF_W_HALLUCINATION = 0.45
CONF_W_INTENT = 0.20
