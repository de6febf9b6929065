from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from deepresearch.agents.orchestrator import ResearchOrchestrator, ResearchServices
from deepresearch.config import ResearchLimits
from deepresearch.errors import ProviderError
from deepresearch.llm_client import ModelConfig
from deepresearch.services.task_store import InMemoryResearchStore
from deepresearch.tools.firecrawl import DiscoveredPage, ScrapeResult
from deepresearch.tools.search_provider import SearchResponse

TOKEN = "token-1"
USER_ID = "user-1"


class FakeLLM:
    """Scripted LLM. JSON replies are looked up by caller name."""

    def __init__(
        self,
        *,
        json_replies: dict[str, Any] | None = None,
        text: str = "Fallback answer about the research topic.",
        chunks: list[str] | None = None,
        stream_error: bool = False,
        complete_error: bool = False,
    ):
        self.config = ModelConfig(
            model_id="grok-4-latest",
            provider="grok",
            base_url="https://api.x.ai/v1",
            model="grok-4-latest",
            api_key="test",
        )
        self.json_replies = json_replies or {}
        self.text = text
        self.chunks = chunks if chunks is not None else ["Streamed ", "answer."]
        self.stream_error = stream_error
        self.complete_error = complete_error
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system: str, user: str, *, json_mode: bool = False, caller: str = "llm") -> str:
        self.calls.append(("complete", caller))
        if json_mode:
            reply = self.json_replies.get(caller)
            if reply is None:
                raise ProviderError("fake", f"no reply for {caller}")
            return reply if isinstance(reply, str) else json.dumps(reply)
        if self.complete_error:
            raise ProviderError("fake", "completion failed")
        return self.text

    async def stream(self, system: str, user: str, *, caller: str = "llm"):
        self.calls.append(("stream", caller))
        for chunk in self.chunks:
            yield chunk
        if self.stream_error:
            raise ProviderError("fake", "stream failed")


class FakeSearch:
    def __init__(self, *, fail: bool = False, block_after: int | None = None, prose_chars: int = 600):
        self.fail = fail
        self.block_after = block_after
        self.prose_chars = prose_chars
        self.calls: list[str] = []
        self.blocked = asyncio.Event()
        self.configured = True

    async def search(self, query: str, *, recency: str | None = None) -> SearchResponse | None:
        self.calls.append(query)
        n = len(self.calls)
        if self.block_after is not None and n > self.block_after:
            self.blocked.set()
            await asyncio.Event().wait()
        if self.fail:
            return None
        return SearchResponse(
            prose=f"Finding {n} for {query}. " + "x" * self.prose_chars,
            citations=[f"https://site{n}-{i}.example.com/page" for i in range(3)],
            provider="fake",
        )


class FakeScraper:
    def __init__(self, *, fail: bool = False, structured: dict[str, Any] | None = None):
        self.fail = fail
        self.structured = structured
        self.calls: list[str] = []
        self.configured = True

    async def scrape(self, url: str, *, extraction_schema: dict[str, Any] | None = None) -> ScrapeResult | None:
        self.calls.append(url)
        if self.fail:
            return None
        return ScrapeResult(
            url=url,
            markdown=f"Full page content for {url}. " + "y" * 800,
            title=f"Page {len(self.calls)}",
            structured=self.structured if extraction_schema else None,
        )


class FakeDiscovery:
    def __init__(self, pages: list[DiscoveredPage] | None = None, mapped: list[str] | None = None):
        self.pages = pages or []
        self.mapped = mapped or []
        self.discover_calls: list[str] = []
        self.map_calls: list[str] = []
        self.configured = True

    async def discover(self, query: str, *, limit: int = 8, prefetch: bool = False) -> list[DiscoveredPage]:
        self.discover_calls.append(query)
        return list(self.pages)

    async def map_domain(self, url: str, *, search: str = "", limit: int = 10) -> list[str]:
        self.map_calls.append(url)
        return list(self.mapped)


@pytest.fixture
def limits() -> ResearchLimits:
    return ResearchLimits()


@pytest.fixture
def store() -> InMemoryResearchStore:
    return InMemoryResearchStore(tokens={TOKEN: USER_ID}, balances={USER_ID: 100})


def make_orchestrator(
    store: InMemoryResearchStore,
    *,
    llm: FakeLLM | None = None,
    search: FakeSearch | None = None,
    scraper: FakeScraper | None = None,
    discovery: FakeDiscovery | None = None,
    limits: ResearchLimits | None = None,
) -> ResearchOrchestrator:
    fake_llm = llm or FakeLLM()
    services = ResearchServices(
        identity=store,
        store=store,
        ledger=store,
        search=search or FakeSearch(),
        scraper=scraper,
        discovery=discovery,
        llm_factory=lambda _model: fake_llm,
    )
    return ResearchOrchestrator(services, limits=limits or ResearchLimits())


def payloads(orchestrator: ResearchOrchestrator) -> list[dict[str, Any]]:
    return [event.to_payload() for event in orchestrator.emitter.history]
