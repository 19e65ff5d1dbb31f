"""Query endpoints."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from fin_crag.api.dependencies import get_orchestrator
from fin_crag.models.schemas import QueryMetadata, QueryRequest, QueryResponse
from fin_crag.pipeline.crag_orchestrator import CRAGOrchestrator, metadata_to_dict

router = APIRouter()


def _history(request: QueryRequest) -> list[dict[str, str]]:
    return [turn.model_dump() for turn in request.conversation_history]


@router.post("/query", response_model=QueryResponse)
async def query(
    request: QueryRequest,
    orchestrator: CRAGOrchestrator = Depends(get_orchestrator),
) -> QueryResponse:
    result = await orchestrator.process(
        request.query,
        request.user_id,
        conversation_history=_history(request),
        permissions=request.permissions,
    )
    return QueryResponse(
        content=result.content,
        metadata=QueryMetadata(**metadata_to_dict(result.metadata)),
    )


@router.post("/query/stream")
async def query_stream(
    request: QueryRequest,
    orchestrator: CRAGOrchestrator = Depends(get_orchestrator),
):
    """Stream the answer via Server-Sent Events."""

    async def event_generator():
        async for event in orchestrator.process_stream(
            request.query,
            request.user_id,
            conversation_history=_history(request),
            permissions=request.permissions,
        ):
            yield f"event: {event['event']}\ndata: {json.dumps(event['data'])}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
