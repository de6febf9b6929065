import json

import pytest

from deepresearch.errors import BudgetError, SynthesisError
from deepresearch.models.events import ResearchEvent
from deepresearch.models.research import TaskPhase
from deepresearch.services import streaming
from deepresearch.services.streaming import ProgressEmitter


@pytest.mark.asyncio
async def test_emitter_delivers_in_order_and_stops_on_close():
    emitter = ProgressEmitter()
    await emitter.emit(streaming.phase_changed(TaskPhase.PLANNING, "Analyzing"))
    await emitter.emit(streaming.content_chunk("Denim"))
    await emitter.close()
    await emitter.emit(streaming.content_chunk("dropped"))

    received = [event async for event in emitter]

    assert [e.to_payload() for e in received] == [
        {"phase": "planning", "message": "Analyzing"},
        {"phase": "generating", "content": "Denim"},
    ]
    assert len(emitter.history) == 2


def test_event_format_is_sse_frame():
    frame = ResearchEvent(TaskPhase.SEARCHING, {"message": "Searching"}).format()
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    assert json.loads(frame[len("data: "):]) == {"phase": "searching", "message": "Searching"}


def test_budget_error_event_payload():
    event = streaming.error(BudgetError(balance=2, required=8))
    assert event.is_terminal
    assert event.to_payload()["shortfall"] == 6


def test_synthesis_error_carries_partial_findings():
    event = streaming.error(SynthesisError("Failed to generate response", "three mills"), task_id="t1")
    assert event.to_payload() == {
        "phase": "failed",
        "error": "Failed to generate response",
        "partialFindings": "three mills",
        "taskId": "t1",
    }


def test_cancelled_event():
    payload = streaming.cancelled(task_id="t1", credits_used=11).to_payload()
    assert payload["cancelled"] is True
    assert payload["creditsUsed"] == 11
