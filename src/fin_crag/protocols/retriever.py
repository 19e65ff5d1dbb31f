"""Protocol for per-domain financial data retrievers."""

from __future__ import annotations

from typing import Protocol

from fin_crag.models.domain import (
    QueryIntent,
    RetrievalOptions,
    RetrievedData,
    SchemaMetadata,
)


class DataRetriever(Protocol):
    name: str
    description: str

    async def retrieve(
        self, user_id: str, query: str, options: RetrievalOptions | None = None
    ) -> RetrievedData:
        """Return a bundle for this domain. No data means record_count == 0, never an exception."""
        ...

    def get_schema(self) -> SchemaMetadata: ...

    def is_relevant_for(self, intent: QueryIntent) -> bool: ...
