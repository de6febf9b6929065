from __future__ import annotations

from datetime import date

import pytest

from conftest import FakeDiscovery, FakeLLM, FakeScraper, FakeSearch
from deepresearch.agents.iteration import IterationEngine, SearchQueue, key_terms
from deepresearch.agents.planner import VALIDATOR_PRIORITY
from deepresearch.agents.validator import ResearchValidator
from deepresearch.config import ResearchLimits
from deepresearch.models.research import (
    QueryCategory,
    ResearchPlan,
    ResearchTask,
    SearchSpec,
    SourceType,
    TaskPhase,
)
from deepresearch.services.budget import CreditAccountant
from deepresearch.tools.firecrawl import DiscoveredPage


def _engine(
    *,
    query: str = "History of the denim jacket",
    category: QueryCategory = QueryCategory.GENERAL,
    searches: list[SearchSpec] | None = None,
    limits: ResearchLimits | None = None,
    search: FakeSearch | None = None,
    **kwargs,
) -> tuple[IterationEngine, list]:
    limits = limits or ResearchLimits()
    task = ResearchTask(user_id="u1", query=query, category=category)
    plan = ResearchPlan(
        category=category,
        searches=searches
        or [
            SearchSpec(f"{query} overview", "Overview", 1),
            SearchSpec(f"{query} brands", "Brands", 2),
            SearchSpec(f"{query} news", "News", 3),
        ],
    )
    events: list = []

    async def emit(event):
        events.append(event)

    engine = IterationEngine(
        task=task,
        plan=plan,
        limits=limits,
        accountant=CreditAccountant(limits),
        search=search or FakeSearch(),
        emit=emit,
        **kwargs,
    )
    return engine, events


def test_search_queue_dedupes_and_orders_by_priority():
    queue = SearchQueue()
    assert queue.push(SearchSpec("denim mills", "a", 3))
    assert not queue.push(SearchSpec("  Denim   MILLS ", "b", 1))
    assert queue.push(SearchSpec("selvedge denim", "c", 1))
    assert queue.push(SearchSpec("raw denim", "d", 3))

    popped = queue.pop_many(2)
    assert [s.query for s in popped] == ["selvedge denim", "denim mills"]
    assert len(queue) == 1
    # Popped queries stay seen for the rest of the task.
    assert not queue.push(SearchSpec("denim mills", "again", 1))


def test_key_terms_skips_stopwords():
    assert key_terms("What are the best organic cotton suppliers") == "organic cotton suppliers"


def test_add_source_upgrades_in_place():
    engine, _ = _engine()
    engine.add_source("https://mill.example.com/about#team", SourceType.SEARCH, relevance=0.7)
    engine.add_source("mill.example.com/about", SourceType.SCRAPE, relevance=0.9, title="About the mill")
    engine.add_source("https://mill.example.com/about", SourceType.DISCOVERY, relevance=0.5)

    assert list(engine.sources) == ["https://mill.example.com/about"]
    source = engine.sources["https://mill.example.com/about"]
    assert source.source_type == SourceType.SCRAPE
    assert source.relevance == 0.9
    assert source.title == "About the mill"


def test_add_source_ignores_unusable_urls():
    engine, _ = _engine()
    assert engine.add_source("", SourceType.SEARCH, relevance=1.0) is None
    assert engine.sources == {}


@pytest.mark.asyncio
async def test_satisfied_criteria_make_zero_calls():
    limits = ResearchLimits(
        confidence_threshold=0.0,
        coverage_threshold=0.0,
        min_content_length=0,
        min_sources=0,
    )
    search = FakeSearch()
    engine, events = _engine(limits=limits, search=search)

    outcome = await engine.run()

    assert outcome.stop_reason == "thresholds"
    assert outcome.iterations == 0
    assert search.calls == []
    assert engine.accountant.accumulated == 8
    assert engine.task.phase == TaskPhase.SEARCHING
    assert len(events) == 1


@pytest.mark.asyncio
async def test_budget_caps_search_fanout():
    limits = ResearchLimits(max_credits=10)
    search = FakeSearch()
    engine, _ = _engine(
        limits=limits,
        search=search,
        searches=[SearchSpec(f"denim topic {i}", "Topic", 1) for i in range(4)],
    )

    outcome = await engine.run()

    assert outcome.stop_reason == "budget"
    assert len(search.calls) == 2
    assert engine.accountant.accumulated == 10
    # Unaffordable searches go back on the queue rather than vanishing.
    assert sorted(s.query for s in engine.queue.pop_many(5)) == ["denim topic 2", "denim topic 3"]


@pytest.mark.asyncio
async def test_tight_budget_runs_every_popped_search_in_order():
    limits = ResearchLimits(max_credits=10)
    search = FakeSearch(fail=True)
    engine, _ = _engine(
        limits=limits,
        search=search,
        searches=[SearchSpec(f"q{i}", "Topic", 1) for i in range(4)],
    )

    await engine.run()

    # Failed calls cost nothing, so the headroom never shrinks and no spec is skipped.
    assert search.calls[:4] == ["q0", "q1", "q2", "q3"]
    assert engine.accountant.accumulated == 8


@pytest.mark.asyncio
async def test_failed_searches_are_free_and_loop_exhausts():
    search = FakeSearch(fail=True)
    engine, _ = _engine(search=search)

    outcome = await engine.run()

    # Three planned searches, four depth refills, then nothing left to try.
    assert outcome.stop_reason == "exhausted"
    assert outcome.iterations == 3
    assert len(search.calls) == 7
    assert engine.accountant.accumulated == 8
    assert outcome.sources == []


@pytest.mark.asyncio
async def test_failed_scrapes_are_not_retried():
    scraper = FakeScraper(fail=True)
    engine, _ = _engine(scraper=scraper, limits=ResearchLimits(max_iterations=2))

    outcome = await engine.run()

    assert outcome.stop_reason == "max_iterations"
    assert len(scraper.calls) == 6
    assert len(set(scraper.calls)) == 6
    assert engine.scraped == set()
    assert engine.failed_urls == set(scraper.calls)
    assert engine.accountant.scrape_count == 0
    assert any("No pages could be read" in note for note in outcome.notes)


@pytest.mark.asyncio
async def test_supplier_scrapes_use_extraction():
    scraper = FakeScraper(structured={"company_name": "Fabrica Lda", "moq": "300m"})
    engine, events = _engine(
        query="denim suppliers Portugal",
        category=QueryCategory.SUPPLIER,
        scraper=scraper,
        limits=ResearchLimits(max_iterations=1),
    )

    await engine.run()

    assert TaskPhase.EXTRACTING in {e.phase for e in events}
    scraped = [s for s in engine.sources.values() if s.source_type == SourceType.SCRAPE]
    assert len(scraped) == 3
    assert all(s.relevance >= 0.95 for s in scraped)
    assert '"company_name": "Fabrica Lda"' in engine.content
    assert engine.accountant.accumulated == 8 + 3 + 2 * 3


@pytest.mark.asyncio
async def test_discovery_adds_sources_without_credits():
    discovery = FakeDiscovery(
        pages=[
            DiscoveredPage(
                url="https://archive.example.org/denim",
                title="Denim archive",
                description="Archive of denim history",
                markdown="Levi Strauss patented riveted work pants in 1873.",
            )
        ]
    )
    engine, _ = _engine(discovery=discovery, limits=ResearchLimits(max_iterations=1))

    await engine.run()

    assert discovery.discover_calls[0] == "History of the denim jacket"
    assert discovery.discover_calls[1] == f"History of the denim jacket {date.today().year}"
    source = engine.sources["https://archive.example.org/denim"]
    assert source.source_type == SourceType.DISCOVERY
    assert source.relevance == 0.5
    assert "### Discovered: Denim archive" in engine.content
    assert engine.accountant.accumulated == 8 + 3


@pytest.mark.asyncio
async def test_authority_domains_mapped_on_first_round():
    discovery = FakeDiscovery(mapped=["https://www.textileexchange.org/report"])
    engine, _ = _engine(discovery=discovery, limits=ResearchLimits(max_iterations=1))
    engine.plan.authority_domains = ["textileexchange.org"]

    await engine.run()

    assert discovery.map_calls == ["textileexchange.org"]
    assert engine.sources["https://www.textileexchange.org/report"].relevance == 0.6


@pytest.mark.asyncio
async def test_validation_merges_follow_up_work():
    llm = FakeLLM(
        json_replies={
            "validator": {
                "confidence": 0.42,
                "coverage": 0.31,
                "gaps": [{"description": "No MOQ data", "suggested_search": "denim mill MOQ Portugal"}],
                "contradictions": ["Founding year differs between sources"],
                "additional_searches": ["denim jacket 1950s youth culture"],
                "scrape_urls": ["museum.example.org/denim"],
            }
        }
    )
    engine, events = _engine(validator=ResearchValidator(llm))
    engine.add_source("https://a.example.com", SourceType.SEARCH, relevance=0.9)

    applied = await engine.validate(loop_phase=TaskPhase.SEARCHING)

    assert applied
    assert engine.scores.confidence == pytest.approx(0.42)
    assert engine.scores.coverage == pytest.approx(0.31)
    assert engine.gaps == ["No MOQ data"]
    assert engine.contradictions == ["Founding year differs between sources"]
    suggested = engine.sources["https://museum.example.org/denim"]
    assert suggested.source_type == SourceType.DISCOVERY
    assert suggested.relevance == 0.85

    queued = engine.queue.pop_many(10)
    follow_ups = [s for s in queued if s.priority == VALIDATOR_PRIORITY]
    assert {s.query for s in follow_ups} == {"denim mill MOQ Portugal", "denim jacket 1950s youth culture"}
    assert events[-1].phase == TaskPhase.SEARCHING


@pytest.mark.asyncio
async def test_final_validation_skips_already_validated_round():
    llm = FakeLLM(json_replies={"validator": {"confidence": 0.5, "coverage": 0.5}})
    engine, _ = _engine(validator=ResearchValidator(llm))
    engine.iteration = 2

    assert await engine.validate(loop_phase=TaskPhase.SEARCHING)
    assert not await engine.final_validation()
    assert llm.calls.count(("complete", "validator")) == 1
