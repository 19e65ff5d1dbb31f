"""FastAPI dependency injection helpers."""

from __future__ import annotations

from fastapi import Request

from fin_crag.config.settings import Settings
from fin_crag.pipeline.crag_orchestrator import CRAGOrchestrator


def get_orchestrator(request: Request) -> CRAGOrchestrator:
    return request.app.state.orchestrator


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
