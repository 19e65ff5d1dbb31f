"""Write sample financial snapshots for a demo user so the server has data to answer from."""

from __future__ import annotations

import json
import sys
from pathlib import Path

from fin_crag.config.settings import Settings

DEMO_USER = "demo-user"

SAMPLE_SNAPSHOTS = {
    "transactions": {
        "description": "Income and expense transactions for the period",
        "record_count": 4,
        "data": [
            {"date": "2025-06-02", "description": "Jaya Grocer", "category": "Food", "amount": -182.40},
            {"date": "2025-06-05", "description": "Grab ride", "category": "Transport", "amount": -23.50},
            {"date": "2025-06-12", "description": "Nasi kandar", "category": "Food", "amount": -18.10},
            {"date": "2025-06-25", "description": "Salary", "category": "Income", "amount": 6500.00},
        ],
        "aggregations": {
            "totalExpenses": 2140.75,
            "totalIncome": 6500.00,
            "netCashFlow": 4359.25,
            "expensesTrend": "decreasing",
            "percentChangeFromLastPeriod": -8.2,
            "categoryBreakdown": {"Food": 450.50, "Transport": 210.00, "Utilities": 320.25},
        },
        "insights": [
            "Food is your largest spending category at RM450.50",
            "\U0001f4a1 Cooking at home twice more a week could save about RM120",
        ],
    },
    "budgets": {
        "description": "Monthly category budgets and utilization",
        "record_count": 3,
        "data": [
            {"category": "Food", "limit": 600.0, "spent": 450.50},
            {"category": "Transport", "limit": 200.0, "spent": 210.00},
            {"category": "Utilities", "limit": 400.0, "spent": 320.25},
        ],
        "aggregations": {
            "totalBudgets": 3,
            "overallUtilization": 81.7,
            "overBudgetCount": 1,
            "underBudgetCount": 2,
        },
        "insights": ["\u26a0\ufe0f Transport is 5% over budget"],
    },
    "goals": {
        "description": "Savings goals and progress",
        "record_count": 1,
        "data": [{"name": "Emergency fund", "target": 15000.0, "saved": 9000.0}],
        "aggregations": {"totalGoals": 1, "overallProgress": 60.0, "onTrackCount": 1, "completedCount": 0},
        "insights": ["Emergency fund is 60% funded"],
    },
    "tax": {
        "description": "LHDN tax reliefs and estimated position for the year of assessment",
        "record_count": 2,
        "data": [
            {"relief": "Lifestyle", "claimed": 1800.0, "limit": 2500.0},
            {"relief": "EPF and life insurance", "claimed": 4000.0, "limit": 7000.0},
        ],
        "aggregations": {
            "taxYear": 2025,
            "annualIncome": 78000.0,
            "totalReliefsClaimed": 5800.0,
            "estimatedTaxBracket": "13%",
            "projectedRefundOrOwed": "refund",
            "potentialAdditionalSavings": 481.0,
        },
        "insights": ["\U0001f4a1 RM700 of lifestyle relief is still unclaimed"],
    },
}


def main() -> None:
    root = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(Settings().snapshot_dir)
    user_dir = root / DEMO_USER
    user_dir.mkdir(parents=True, exist_ok=True)

    for source, payload in SAMPLE_SNAPSHOTS.items():
        path = user_dir / f"{source}.json"
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        print(f"Wrote {path} ({payload['record_count']} records)")


if __name__ == "__main__":
    main()
