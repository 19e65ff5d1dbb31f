"""FastAPI application factory with lifespan management."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from fin_crag import __version__
from fin_crag.api.middleware import RequestTimingMiddleware
from fin_crag.api.routes_health import router as health_router
from fin_crag.api.routes_query import router as query_router
from fin_crag.config.settings import Settings
from fin_crag.generation.factory import create_llm_client_from_settings
from fin_crag.models.domain import RetrieverName
from fin_crag.observability.logger import get_logger, setup_logging
from fin_crag.pipeline.crag_orchestrator import CRAGOrchestrator
from fin_crag.retrieval.context_assembler import ContextAssembler
from fin_crag.retrieval.registry import RetrieverRegistry
from fin_crag.retrieval.static_retriever import SnapshotRetriever

logger = get_logger("app")


def build_orchestrator(settings: Settings) -> CRAGOrchestrator:
    registry = RetrieverRegistry(
        {name: SnapshotRetriever(name, settings.snapshot_dir) for name in RetrieverName}
    )
    llm = create_llm_client_from_settings(settings)
    return CRAGOrchestrator(
        llm=llm,
        assembler=ContextAssembler(registry),
        config=settings.to_crag_config(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    setup_logging(settings.log_level, json=settings.log_json)

    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = build_orchestrator(settings)

    orchestrator: CRAGOrchestrator = app.state.orchestrator
    logger.info(
        "startup_complete",
        provider=getattr(orchestrator.llm, "provider", "unknown"),
        model=getattr(orchestrator.llm, "model_name", ""),
        retrievers=[name.value for name in orchestrator.assembler.registry],
    )

    yield

    logger.info("shutdown_complete")


def create_app(
    settings: Settings | None = None, orchestrator: CRAGOrchestrator | None = None
) -> FastAPI:
    app = FastAPI(
        title="Fin CRAG",
        version=__version__,
        description="Corrective RAG for personal finance questions",
        lifespan=lifespan,
    )
    app.state.settings = settings or Settings()
    app.state.orchestrator = orchestrator
    app.add_middleware(RequestTimingMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(query_router, prefix="/v1", tags=["query"])
    return app
