from __future__ import annotations

import json as _json
from typing import Any

from fastapi import APIRouter, Body, Depends
from sse_starlette.sse import EventSourceResponse

from deepresearch.agents.orchestrator import ResearchOrchestrator, ResearchServices, stream_research
from deepresearch.api.deps import bearer_token, get_research_services
from deepresearch.models.events import DONE_SENTINEL
from deepresearch.services import logger as log_service

router = APIRouter(prefix="/api/research", tags=["research"])


@router.post("")
async def run_research(
    payload: dict[str, Any] = Body(...),
    token: str | None = Depends(bearer_token),
    services: ResearchServices = Depends(get_research_services),
):
    """Run a deep research task and stream its progress as server-sent events."""
    orchestrator = ResearchOrchestrator(services)

    async def event_generator():
        log_service.log_event(
            event_type="research_started",
            message="Research stream opened",
            query=str(payload.get("query", ""))[:100],
            model=payload.get("model"),
        )
        try:
            async for event in stream_research(orchestrator, payload, token=token):
                yield {"data": _json.dumps(event.to_payload(), default=str)}
        except Exception as e:
            log_service.log_event(
                event_type="stream_error",
                message="Unhandled error in research stream",
                error=str(e),
            )
            yield {"data": _json.dumps({"phase": "failed", "error": "Research stream failed unexpectedly."})}
        yield {"data": DONE_SENTINEL}

    return EventSourceResponse(event_generator())
