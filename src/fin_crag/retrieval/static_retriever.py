"""Retrievers backed by precomputed bundles: in memory, or JSON snapshots on disk."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterable
from dataclasses import replace
from pathlib import Path

from fin_crag.exceptions import RetrievalError
from fin_crag.models.domain import (
    QueryIntent,
    RetrievalOptions,
    RetrievedData,
    RetrieverName,
    SchemaColumn,
    SchemaMetadata,
)
from fin_crag.observability.logger import get_logger

logger = get_logger("static_retriever")

# Intents each domain can contribute to; general advice draws on every domain.
RELEVANT_INTENTS: dict[RetrieverName, frozenset[QueryIntent]] = {
    RetrieverName.TRANSACTIONS: frozenset(QueryIntent),
    RetrieverName.BUDGETS: frozenset(
        {
            QueryIntent.BUDGET_REVIEW,
            QueryIntent.SPENDING_ANALYSIS,
            QueryIntent.FORECAST_REVIEW,
            QueryIntent.COMPARISON,
            QueryIntent.GOAL_PROGRESS,
            QueryIntent.SUBSCRIPTION_REVIEW,
            QueryIntent.CREDIT_CARD_ADVICE,
            QueryIntent.TAX_OPTIMIZATION,
            QueryIntent.GENERAL_ADVICE,
        }
    ),
    RetrieverName.GOALS: frozenset(
        {
            QueryIntent.GOAL_PROGRESS,
            QueryIntent.BUDGET_REVIEW,
            QueryIntent.INCOME_ANALYSIS,
            QueryIntent.TAX_OPTIMIZATION,
            QueryIntent.GENERAL_ADVICE,
        }
    ),
    RetrieverName.SUBSCRIPTIONS: frozenset(
        {
            QueryIntent.SUBSCRIPTION_REVIEW,
            QueryIntent.SPENDING_ANALYSIS,
            QueryIntent.FORECAST_REVIEW,
            QueryIntent.GENERAL_ADVICE,
        }
    ),
    RetrieverName.CREDIT_CARDS: frozenset(
        {
            QueryIntent.CREDIT_CARD_ADVICE,
            QueryIntent.SPENDING_ANALYSIS,
            QueryIntent.ANOMALY_DETECTION,
            QueryIntent.GENERAL_ADVICE,
        }
    ),
    RetrieverName.TAX: frozenset(
        {QueryIntent.TAX_OPTIMIZATION, QueryIntent.INCOME_ANALYSIS, QueryIntent.GENERAL_ADVICE}
    ),
    RetrieverName.INCOME: frozenset(
        {
            QueryIntent.INCOME_ANALYSIS,
            QueryIntent.TAX_OPTIMIZATION,
            QueryIntent.GOAL_PROGRESS,
            QueryIntent.COMPARISON,
            QueryIntent.GENERAL_ADVICE,
        }
    ),
    RetrieverName.FORECASTS: frozenset(
        {
            QueryIntent.FORECAST_REVIEW,
            QueryIntent.SPENDING_ANALYSIS,
            QueryIntent.BUDGET_REVIEW,
            QueryIntent.COMPARISON,
            QueryIntent.ANOMALY_DETECTION,
            QueryIntent.GENERAL_ADVICE,
        }
    ),
}


def _apply_options(bundle: RetrievedData, options: RetrievalOptions | None) -> RetrievedData:
    """Cap records to the requested limit; aggregations describe the full set and stay intact."""
    if options is None:
        return bundle
    data = bundle.data
    if options.limit is not None:
        data = data[: options.limit]
    return replace(
        bundle,
        data=list(data),
        date_range=bundle.date_range or options.date_range,
    )


class StaticRetriever:
    """Serves one fixed bundle for every user. Used in tests and demos."""

    def __init__(
        self,
        name: RetrieverName | str,
        bundle: RetrievedData | None = None,
        description: str = "",
        intents: Iterable[QueryIntent] | None = None,
        delay_s: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.name = RetrieverName(name).value
        self.description = description or f"Precomputed {self.name} data"
        self._bundle = bundle
        self._intents = frozenset(intents) if intents is not None else RELEVANT_INTENTS[RetrieverName(name)]
        self._delay_s = delay_s
        self._error = error

    async def retrieve(
        self, user_id: str, query: str, options: RetrievalOptions | None = None
    ) -> RetrievedData:
        if self._delay_s:
            await asyncio.sleep(self._delay_s)
        if self._error is not None:
            raise self._error
        if self._bundle is None:
            return RetrievedData(
                source=self.name,
                description=self.description,
                record_count=0,
                date_range=options.date_range if options else None,
            )
        return _apply_options(self._bundle, options)

    def get_schema(self) -> SchemaMetadata:
        if self._bundle is not None and self._bundle.schema is not None:
            return self._bundle.schema
        return SchemaMetadata(table_name=self.name, description=self.description)

    def is_relevant_for(self, intent: QueryIntent) -> bool:
        return intent in self._intents


class SnapshotRetriever:
    """Reads ``<root>/<user_id>/<source>.json`` bundles exported by the persistence layer.

    A snapshot is a JSON object with ``description``, ``record_count``, ``data``,
    ``aggregations``, ``insights`` and optionally ``schema`` (with ``columns``).
    A missing file means the user has no data for this domain.
    """

    def __init__(self, name: RetrieverName | str, root: str | Path) -> None:
        self.name = RetrieverName(name).value
        self.description = f"{self.name.replace('_', ' ').title()} snapshot"
        self._root = Path(root)
        self._intents = RELEVANT_INTENTS[RetrieverName(name)]

    def _path(self, user_id: str) -> Path:
        if not user_id or "/" in user_id or "\\" in user_id or user_id.startswith("."):
            raise RetrievalError(f"Invalid user id for snapshot lookup: {user_id!r}")
        return self._root / user_id / f"{self.name}.json"

    async def retrieve(
        self, user_id: str, query: str, options: RetrievalOptions | None = None
    ) -> RetrievedData:
        path = self._path(user_id)
        if not path.exists():
            logger.info("snapshot_missing", source=self.name)
            return RetrievedData(
                source=self.name,
                description=self.description,
                record_count=0,
                date_range=options.date_range if options else None,
            )

        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
            payload = json.loads(raw)
        except (OSError, json.JSONDecodeError) as e:
            raise RetrievalError(f"Failed to read {self.name} snapshot: {e}") from e

        schema = None
        if isinstance(payload.get("schema"), dict):
            schema_raw = payload["schema"]
            schema = SchemaMetadata(
                table_name=schema_raw.get("table_name", self.name),
                description=schema_raw.get("description", ""),
                columns=[
                    SchemaColumn(
                        name=c["name"],
                        type=c.get("type", "string"),
                        description=c.get("description", ""),
                    )
                    for c in schema_raw.get("columns", [])
                ],
            )

        data = payload.get("data", [])
        bundle = RetrievedData(
            source=self.name,
            description=payload.get("description", self.description),
            record_count=int(payload.get("record_count", len(data))),
            data=data,
            aggregations=payload.get("aggregations", {}),
            insights=payload.get("insights", []),
            schema=schema,
        )
        return _apply_options(bundle, options)

    def get_schema(self) -> SchemaMetadata:
        return SchemaMetadata(table_name=self.name, description=self.description)

    def is_relevant_for(self, intent: QueryIntent) -> bool:
        return intent in self._intents
