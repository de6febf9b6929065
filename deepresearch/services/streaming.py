from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

from deepresearch.errors import ResearchError
from deepresearch.models.events import ResearchEvent
from deepresearch.models.research import ResearchPlan, TaskPhase


def phase_changed(phase: TaskPhase, message: str, **kwargs: Any) -> ResearchEvent:
    return ResearchEvent(phase=phase, data={"message": message, **kwargs})


def plan_created(plan: ResearchPlan) -> ResearchEvent:
    return ResearchEvent(
        phase=TaskPhase.PLANNING,
        data={
            "message": f"Research plan ready ({len(plan.searches)} searches)",
            "queryType": plan.category.value,
            "complexity": plan.complexity,
            "expectedFormat": plan.expected_output,
        },
    )


def iteration_progress(
    phase: TaskPhase,
    message: str,
    *,
    iteration: int,
    source_count: int,
    confidence: float,
    coverage: float,
    **kwargs: Any,
) -> ResearchEvent:
    return ResearchEvent(
        phase=phase,
        data={
            "message": message,
            "iteration": iteration,
            "sourceCount": source_count,
            "confidence": round(confidence, 3),
            "coverage": round(coverage, 3),
            **kwargs,
        },
    )


def content_chunk(chunk: str) -> ResearchEvent:
    return ResearchEvent(phase=TaskPhase.GENERATING, data={"content": chunk})


def research_complete(
    *,
    task_id: str,
    answer: str,
    sources: list[dict[str, Any]],
    credits_used: int,
    query_type: str,
    model_used: str,
    confidence: float,
    coverage: float,
    runtime_ms: int | None = None,
) -> ResearchEvent:
    data: dict[str, Any] = {
        "taskId": task_id,
        "answer": answer,
        "sources": sources,
        "sourceCount": len(sources),
        "creditsUsed": credits_used,
        "queryType": query_type,
        "modelUsed": model_used,
        "confidence": round(confidence, 3),
        "coverage": round(coverage, 3),
    }
    if runtime_ms is not None:
        data["runtimeMs"] = runtime_ms
    return ResearchEvent(phase=TaskPhase.COMPLETED, data=data)


def failed(
    reason: str,
    *,
    task_id: str | None = None,
    credits_used: int | None = None,
    **kwargs: Any,
) -> ResearchEvent:
    data: dict[str, Any] = {"error": reason, **kwargs}
    if task_id:
        data["taskId"] = task_id
    if credits_used is not None:
        data["creditsUsed"] = credits_used
    return ResearchEvent(phase=TaskPhase.FAILED, data=data)


def error(exc: ResearchError, *, task_id: str | None = None, credits_used: int | None = None) -> ResearchEvent:
    payload = exc.to_event_payload()
    reason = payload.pop("error")
    return failed(reason, task_id=task_id, credits_used=credits_used, **payload)


def cancelled(*, task_id: str | None = None, credits_used: int | None = None) -> ResearchEvent:
    return failed(
        "Research was cancelled.",
        task_id=task_id,
        credits_used=credits_used,
        cancelled=True,
    )


_CLOSE = object()


class ProgressEmitter:
    """Single-consumer event channel between a running task and its stream.

    The orchestrator pushes events with `emit`; the transport iterates the
    emitter until `close` is called. Events emitted after close are dropped.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self.history: list[ResearchEvent] = []

    @property
    def closed(self) -> bool:
        return self._closed

    async def emit(self, event: ResearchEvent) -> None:
        if self._closed:
            return
        self.history.append(event)
        await self._queue.put(event)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSE)

    async def __aiter__(self) -> AsyncIterator[ResearchEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            yield item
