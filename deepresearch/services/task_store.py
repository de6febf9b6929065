from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from deepresearch.models.research import ResearchTask, Source
from deepresearch.services import logger as log_service


@dataclass
class LedgerEntry:
    task_id: str
    user_id: str
    amount: int
    description: str


@dataclass
class InMemoryResearchStore:
    """Identity, task store and credit ledger held in process memory.

    Used by the CLI and tests. Tokens map to user ids; every user id maps to
    a credit balance that debits reduce.
    """

    tokens: dict[str, str] = field(default_factory=dict)
    balances: dict[str, int] = field(default_factory=dict)
    tasks: dict[str, dict[str, Any]] = field(default_factory=dict)
    sources: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    ledger: list[LedgerEntry] = field(default_factory=list)
    phase_history: dict[str, list[str]] = field(default_factory=dict)

    # --- identity ---

    async def resolve_user(self, token: str | None) -> str | None:
        if not token:
            return None
        return self.tokens.get(token)

    async def credit_balance(self, user_id: str) -> int | None:
        return self.balances.get(user_id)

    # --- tasks ---

    async def insert_task(self, task: ResearchTask) -> None:
        self.tasks[task.id] = {
            "id": task.id,
            "user_id": task.user_id,
            "query": task.query,
            "conversation_id": task.conversation_id,
            "phase": task.phase.value,
            "credits_used": 0,
        }
        self.phase_history[task.id] = [task.phase.value]
        log_service.log_db_operation("insert", "research_tasks", "success", details=task.id)

    async def update_task(self, task: ResearchTask, **fields: Any) -> None:
        row = self.tasks.setdefault(task.id, {"id": task.id})
        row.update(fields)
        phase = fields.get("phase")
        if phase is not None:
            self.phase_history.setdefault(task.id, []).append(phase)

    async def insert_sources(self, task: ResearchTask, sources: list[Source]) -> None:
        self.sources.setdefault(task.id, []).extend(s.to_dict() for s in sources)

    # --- ledger ---

    async def debit(self, *, task_id: str, user_id: str, amount: int, description: str) -> bool:
        if any(entry.task_id == task_id for entry in self.ledger):
            return True
        self.ledger.append(LedgerEntry(task_id, user_id, amount, description))
        if user_id in self.balances:
            self.balances[user_id] = max(self.balances[user_id] - amount, 0)
        return True
