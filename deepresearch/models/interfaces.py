"""Provider and collaborator seams used by the research pipeline."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from deepresearch.models.research import ResearchTask, Source
    from deepresearch.tools.firecrawl import DiscoveredPage, ScrapeResult
    from deepresearch.tools.search_provider import SearchResponse


class SearchBackend(Protocol):
    @property
    def configured(self) -> bool: ...

    async def search(self, query: str, *, recency: str | None = None) -> "SearchResponse | None": ...


class ScrapeBackend(Protocol):
    @property
    def configured(self) -> bool: ...

    async def scrape(
        self, url: str, *, extraction_schema: dict[str, Any] | None = None
    ) -> "ScrapeResult | None": ...


class DiscoveryBackend(Protocol):
    @property
    def configured(self) -> bool: ...

    async def discover(self, query: str, *, limit: int = 8, prefetch: bool = False) -> "list[DiscoveredPage]": ...

    async def map_domain(self, url: str, *, search: str = "", limit: int = 10) -> list[str]: ...


class IdentityResolver(Protocol):
    async def resolve_user(self, token: str | None) -> str | None: ...

    async def credit_balance(self, user_id: str) -> int | None: ...


class TaskStore(Protocol):
    async def insert_task(self, task: "ResearchTask") -> None: ...

    async def update_task(self, task: "ResearchTask", **fields: Any) -> None: ...

    async def insert_sources(self, task: "ResearchTask", sources: "list[Source]") -> None: ...


class CreditLedger(Protocol):
    async def debit(self, *, task_id: str, user_id: str, amount: int, description: str) -> bool: ...
