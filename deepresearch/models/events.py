from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from deepresearch.models.research import TaskPhase

DONE_SENTINEL = "[DONE]"


@dataclass
class ResearchEvent:
    phase: TaskPhase
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.phase in (TaskPhase.COMPLETED, TaskPhase.FAILED)

    def to_payload(self) -> dict[str, Any]:
        return {"phase": self.phase.value, **self.data}

    def format(self) -> str:
        return f"data: {json.dumps(self.to_payload(), default=str)}\n\n"
