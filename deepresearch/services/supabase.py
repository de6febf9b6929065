from __future__ import annotations

import asyncio
from typing import Any

from supabase import Client, create_client

from deepresearch.config import Settings, settings as default_settings
from deepresearch.models.research import ResearchTask, Source, SourceType
from deepresearch.services import logger as log_service

# research_sources.source_type only accepts search | scrape | crawl.
_SOURCE_TYPE_COLUMN = {
    SourceType.SEARCH: "search",
    SourceType.SCRAPE: "scrape",
    SourceType.DISCOVERY: "crawl",
}


def get_client(config: Settings | None = None) -> Client:
    config = config or default_settings
    return create_client(config.supabase_url, config.supabase_anon_key)


class SupabaseResearchStore:
    """Identity, task rows, source rows and credit ledger on Supabase.

    The supabase client is synchronous, so every call runs in a worker
    thread. Writes are idempotent per task id and never raise.
    """

    def __init__(self, client: Client | None = None, config: Settings | None = None):
        self.config = config or default_settings
        self._client = client
        self._debited: set[str] = set()

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_client(self.config)
        return self._client

    def for_token(self, token: str) -> "SupabaseResearchStore":
        """A store whose table calls run under the caller's row-level security."""
        scoped = get_client(self.config)
        scoped.postgrest.auth(token)
        return SupabaseResearchStore(scoped, self.config)

    # --- identity ---

    async def resolve_user(self, token: str | None) -> str | None:
        if not token:
            return None
        try:
            response = await asyncio.to_thread(self.client.auth.get_user, token)
        except Exception as e:
            log_service.log_security_event("auth_failed", error=str(e)[:200])
            return None
        user = getattr(response, "user", None)
        return str(user.id) if user is not None else None

    async def credit_balance(self, user_id: str) -> int | None:
        def query() -> Any:
            return (
                self.client.table("users")
                .select("credit_balance")
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )

        try:
            result = await asyncio.to_thread(query)
        except Exception as e:
            log_service.log_db_operation("select", "users", "failed", error=str(e))
            return None
        rows = result.data or []
        if not rows:
            return None
        return int(rows[0].get("credit_balance") or 0)

    # --- tasks ---

    async def _write(self, operation: str, table: str, call: Any, details: str | None = None) -> None:
        try:
            await asyncio.to_thread(call)
            log_service.log_db_operation(operation, table, "success", details=details)
        except Exception as e:
            log_service.log_db_operation(operation, table, "failed", details=details, error=str(e))

    async def insert_task(self, task: ResearchTask) -> None:
        row = {
            "id": task.id,
            "user_id": task.user_id,
            "query": task.query,
            "conversation_id": task.conversation_id,
            "phase": task.phase.value,
        }
        await self._write(
            "insert",
            "research_tasks",
            lambda: self.client.table("research_tasks").upsert(row).execute(),
            details=task.id,
        )

    async def update_task(self, task: ResearchTask, **fields: Any) -> None:
        if not fields:
            return
        await self._write(
            "update",
            "research_tasks",
            lambda: self.client.table("research_tasks").update(fields).eq("id", task.id).execute(),
            details=f"{task.id} {','.join(sorted(fields))}",
        )

    async def insert_sources(self, task: ResearchTask, sources: list[Source]) -> None:
        if not sources:
            return
        rows = [
            {
                "task_id": task.id,
                "url": s.url,
                "title": s.title,
                "snippet": s.snippet,
                "source_type": _SOURCE_TYPE_COLUMN[s.source_type],
                "relevance_score": round(s.relevance, 3),
            }
            for s in sources
        ]
        await self._write(
            "insert",
            "research_sources",
            lambda: self.client.table("research_sources").insert(rows).execute(),
            details=f"{task.id} rows={len(rows)}",
        )

    # --- ledger ---

    async def debit(self, *, task_id: str, user_id: str, amount: int, description: str) -> bool:
        if task_id in self._debited:
            return True

        def call() -> Any:
            return self.client.rpc(
                "deduct_credits",
                {"p_user_id": user_id, "p_amount": amount, "p_description": description},
            ).execute()

        try:
            result = await asyncio.to_thread(call)
        except Exception as e:
            log_service.log_db_operation("rpc", "deduct_credits", "failed", details=task_id, error=str(e))
            return False
        data = result.data if isinstance(result.data, dict) else {}
        ok = bool(data.get("success", True))
        if ok:
            self._debited.add(task_id)
        log_service.log_db_operation(
            "rpc",
            "deduct_credits",
            "success" if ok else "rejected",
            details=f"{task_id} amount={amount} {data.get('error') or ''}".strip(),
        )
        return ok
