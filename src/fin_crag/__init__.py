"""Corrective RAG engine for grounded personal-finance answers."""

__version__ = "0.1.0"
