"""Shared test fixtures."""

from __future__ import annotations

from datetime import date

import pytest

from fin_crag.config.settings import CRAGConfig, Settings
from fin_crag.models.domain import (
    AssembledContext,
    ContextMetadata,
    ContextSummaries,
    DateRange,
    QueryIntent,
    RetrievedData,
)
from fin_crag.retrieval.context_assembler import ContextAssembler
from fin_crag.retrieval.registry import RetrieverRegistry
from fin_crag.retrieval.static_retriever import StaticRetriever

TODAY = date(2025, 6, 15)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def settings():
    return Settings(openai_api_key="test-key", _env_file=None)


@pytest.fixture
def quick_config():
    return CRAGConfig(use_quick_grading=True)


@pytest.fixture
def transactions_bundle():
    return RetrievedData(
        source="transactions",
        description="Income and expense transactions for the period",
        record_count=3,
        data=[
            {"date": "2025-06-02", "description": "Jaya Grocer", "category": "Food", "amount": -182.40},
            {"date": "2025-06-12", "description": "Nasi kandar", "category": "Food", "amount": -18.10},
            {"date": "2025-06-25", "description": "Salary", "category": "Income", "amount": 6500.00},
        ],
        aggregations={
            "totalExpenses": 2140.75,
            "totalIncome": 6500.0,
            "netCashFlow": 4359.25,
            "expensesTrend": "decreasing",
            "percentChangeFromLastPeriod": -8.2,
            "categoryBreakdown": {"Food": 450.50, "Transport": 210.0},
        },
        insights=["Food is your largest spending category at RM450.50"],
    )


@pytest.fixture
def budgets_bundle():
    return RetrievedData(
        source="budgets",
        description="Monthly category budgets",
        record_count=2,
        data=[
            {"category": "Food", "limit": 600.0, "spent": 450.50},
            {"category": "Transport", "limit": 200.0, "spent": 210.0},
        ],
        aggregations={"totalBudgets": 2, "overallUtilization": 82.3, "overBudgetCount": 1, "underBudgetCount": 1},
        insights=["\u26a0\ufe0f Transport is 5% over budget"],
    )


@pytest.fixture
def tax_bundle():
    return RetrievedData(
        source="tax",
        description="LHDN reliefs for the year of assessment",
        record_count=1,
        data=[{"relief": "Lifestyle", "claimed": 1800.0, "limit": 2500.0}],
        aggregations={
            "taxYear": 2025,
            "annualIncome": 78000.0,
            "totalReliefsClaimed": 5800.0,
            "estimatedTaxBracket": "13%",
        },
        insights=["\U0001f4a1 RM700 of lifestyle relief is still unclaimed"],
    )


@pytest.fixture
def registry(transactions_bundle, budgets_bundle, tax_bundle):
    return RetrieverRegistry(
        {
            "transactions": StaticRetriever("transactions", transactions_bundle),
            "budgets": StaticRetriever("budgets", budgets_bundle),
            "tax": StaticRetriever("tax", tax_bundle),
        }
    )


@pytest.fixture
def assembler(registry):
    return ContextAssembler(registry)


@pytest.fixture
def food_context(transactions_bundle, budgets_bundle):
    return AssembledContext(
        query="How much did I spend on food this month?",
        intent=QueryIntent.SPENDING_ANALYSIS,
        relevant_data=[transactions_bundle, budgets_bundle],
        total_records=5,
        date_range=DateRange(start=date(2025, 6, 1), end=TODAY, label="June 2025"),
        summaries=ContextSummaries(
            financial="Period: June 2025. Total Expenses: RM2,140.75. Net Cash Flow: RM4,359.25.",
            insights=list(transactions_bundle.insights + budgets_bundle.insights),
        ),
        metadata=ContextMetadata(retrievers_used=["transactions", "budgets"], token_estimate=400),
    )


@pytest.fixture
def empty_context():
    return AssembledContext(
        query="anything",
        intent=QueryIntent.GENERAL_ADVICE,
        relevant_data=[],
        total_records=0,
        date_range=DateRange(start=date(2025, 6, 1), end=TODAY, label="June 2025"),
    )
