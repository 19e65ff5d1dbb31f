"""Typed registry mapping each retriever name to its implementation."""

from __future__ import annotations

from collections.abc import Iterator, Mapping

from fin_crag.models.domain import RetrieverName
from fin_crag.protocols.retriever import DataRetriever

# Key used in caller permission maps for each retriever.
PERMISSION_KEYS: dict[RetrieverName, str] = {
    RetrieverName.TRANSACTIONS: "transactions",
    RetrieverName.BUDGETS: "budgets",
    RetrieverName.GOALS: "goals",
    RetrieverName.SUBSCRIPTIONS: "subscriptions",
    RetrieverName.CREDIT_CARDS: "creditCards",
    RetrieverName.TAX: "taxData",
    RetrieverName.INCOME: "income",
    RetrieverName.FORECASTS: "forecasts",
}


class RetrieverRegistry(Mapping[RetrieverName, DataRetriever]):
    """Read-only after construction; safe to share across concurrent requests."""

    def __init__(self, retrievers: Mapping[RetrieverName | str, DataRetriever] | None = None) -> None:
        self._retrievers: dict[RetrieverName, DataRetriever] = {}
        for name, retriever in (retrievers or {}).items():
            self._retrievers[RetrieverName(name)] = retriever

    def __getitem__(self, name: RetrieverName) -> DataRetriever:
        try:
            return self._retrievers[RetrieverName(name)]
        except ValueError:
            raise KeyError(name) from None

    def __iter__(self) -> Iterator[RetrieverName]:
        return iter(self._retrievers)

    def __len__(self) -> int:
        return len(self._retrievers)

    def is_permitted(self, name: RetrieverName, permissions: Mapping[str, bool] | None) -> bool:
        """Only an explicit False denies access."""
        if permissions is None:
            return True
        return permissions.get(PERMISSION_KEYS[name]) is not False
