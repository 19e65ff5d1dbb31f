"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from fin_crag.api.dependencies import get_orchestrator
from fin_crag.models.schemas import HealthResponse
from fin_crag.pipeline.crag_orchestrator import CRAGOrchestrator

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(orchestrator: CRAGOrchestrator = Depends(get_orchestrator)) -> HealthResponse:
    return HealthResponse(
        status="ok",
        provider=getattr(orchestrator.llm, "provider", "unknown"),
        model=getattr(orchestrator.llm, "model_name", ""),
        retrievers=[name.value for name in orchestrator.assembler.registry],
    )
