"""Adaptive search / discover / scrape loop for one research task."""
from __future__ import annotations

import asyncio
import heapq
import itertools
import json
import re
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable

from deepresearch.agents.planner import VALIDATOR_PRIORITY, refill_searches
from deepresearch.agents.validator import ResearchValidator
from deepresearch.config import ResearchLimits
from deepresearch.models.events import ResearchEvent
from deepresearch.models.interfaces import DiscoveryBackend, ScrapeBackend, SearchBackend
from deepresearch.models.research import (
    QueryCategory,
    ResearchPlan,
    ResearchTask,
    SearchSpec,
    Source,
    SourceType,
    TaskPhase,
)
from deepresearch.models.schemas import QueryDeconstruction
from deepresearch.services import logger as log_service
from deepresearch.services import streaming
from deepresearch.services.budget import CreditAccountant
from deepresearch.services.scoring import ScoreKeeper
from deepresearch.tools import web_utils
from deepresearch.tools.firecrawl import SUPPLIER_EXTRACTION_SCHEMA
from deepresearch.tools.search_provider import recency_for

EventSink = Callable[[ResearchEvent], Awaitable[None]]
PhaseHook = Callable[[TaskPhase], Awaitable[None]]

SEARCH_RELEVANCE_DECAY = 0.1
MIN_CITATION_RELEVANCE = 0.3
DISCOVERY_RELEVANCE = 0.5
AUTHORITY_RELEVANCE = 0.6
SUGGESTED_URL_RELEVANCE = 0.85
SCRAPE_RELEVANCE = 0.9
EXTRACTION_RELEVANCE = 0.95
MAX_AUTHORITY_DOMAINS = 3
AUTHORITY_MAP_LIMIT = 5
PREFETCH_CHARS = 1500
SNIPPET_CHARS = 300

_STOPWORDS = frozenset(
    "the and for with from that this what which who how are was were into about "
    "best top list find show give their there than then also more most".split()
)


def key_terms(query: str, limit: int = 3) -> str:
    words = re.findall(r"[a-zA-Z][a-zA-Z\-]{3,}", query.lower())
    terms: list[str] = []
    for word in words:
        if word in _STOPWORDS or word in terms:
            continue
        terms.append(word)
        if len(terms) >= limit:
            break
    return " ".join(terms)


@dataclass
class IterationOutcome:
    sources: list[Source]
    content: str
    confidence: float
    coverage: float
    iterations: int
    stop_reason: str
    gaps: list[str] = field(default_factory=list)
    contradictions: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)


class SearchQueue:
    """Priority queue of SearchSpecs; a query is only ever queued once per task."""

    def __init__(self) -> None:
        self._heap: list[tuple[int, int, SearchSpec]] = []
        self._counter = itertools.count()
        self._seen: set[str] = set()

    def __len__(self) -> int:
        return len(self._heap)

    @property
    def seen(self) -> set[str]:
        return self._seen

    def push(self, spec: SearchSpec) -> bool:
        key = spec.key()
        if not key or key in self._seen:
            return False
        self._seen.add(key)
        heapq.heappush(self._heap, (spec.priority, next(self._counter), spec))
        return True

    def pop_many(self, count: int) -> list[SearchSpec]:
        specs: list[SearchSpec] = []
        while self._heap and len(specs) < count:
            specs.append(heapq.heappop(self._heap)[2])
        return specs

    def requeue(self, specs: list[SearchSpec]) -> None:
        """Put popped but unexecuted specs back; they stay marked as seen."""
        for spec in specs:
            heapq.heappush(self._heap, (spec.priority, next(self._counter), spec))


class IterationEngine:
    def __init__(
        self,
        *,
        task: ResearchTask,
        plan: ResearchPlan,
        limits: ResearchLimits,
        accountant: CreditAccountant,
        search: SearchBackend,
        scraper: ScrapeBackend | None = None,
        discovery: DiscoveryBackend | None = None,
        validator: ResearchValidator | None = None,
        deconstruction: QueryDeconstruction | None = None,
        emit: EventSink | None = None,
        on_phase: PhaseHook | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.task = task
        self.plan = plan
        self.limits = limits
        self.accountant = accountant
        self.search = search
        self.scraper = scraper
        self.discovery = discovery
        self.validator = validator
        self.deconstruction = deconstruction
        self._emit = emit
        self._on_phase = on_phase
        self._clock = clock

        self.scores = ScoreKeeper(limits)
        self.queue = SearchQueue()
        for spec in plan.searches:
            self.queue.push(spec)

        self.sources: dict[str, Source] = {}
        self._content: list[str] = []
        self._content_length = 0
        self.scraped: set[str] = set()
        self.failed_urls: set[str] = set()
        self.gaps: list[str] = []
        self.contradictions: list[str] = []
        self.iteration = 0
        self._last_validated_iteration = 0
        self._validator_stop = False
        self._started_at: float | None = None

    # --- accumulated state ---

    @property
    def content(self) -> str:
        return "\n\n".join(self._content)

    @property
    def content_length(self) -> int:
        return self._content_length

    @property
    def unique_domains(self) -> int:
        return len({web_utils.extract_domain(url) for url in self.sources})

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    def _append_content(self, block: str) -> None:
        if block.strip():
            self._content.append(block)
            self._content_length += len(block)

    def add_source(
        self,
        url: str,
        source_type: SourceType,
        *,
        relevance: float,
        title: str = "",
        snippet: str = "",
    ) -> Source | None:
        """Insert a source or upgrade the existing one with the same URL."""
        normalized = web_utils.normalize_url(url)
        if not normalized:
            return None
        existing = self.sources.get(normalized)
        if existing is not None:
            existing.upgrade(source_type, relevance=relevance, title=title or None, snippet=snippet or None)
            return existing
        source = Source(
            url=normalized,
            title=title or web_utils.extract_domain(normalized),
            snippet=snippet,
            source_type=source_type,
            relevance=max(0.0, min(relevance, 1.0)),
        )
        self.sources[normalized] = source
        return source

    # --- events ---

    async def _enter(self, phase: TaskPhase, message: str, **extra: Any) -> None:
        changed = self.task.phase != phase
        self.task.advance(phase)
        if changed and self._on_phase is not None:
            await self._on_phase(phase)
        await self._publish(
            streaming.iteration_progress(
                phase,
                message,
                iteration=self.iteration,
                source_count=len(self.sources),
                confidence=self.scores.confidence,
                coverage=self.scores.coverage,
                **extra,
            )
        )

    async def _publish(self, event: ResearchEvent) -> None:
        if self._emit is not None:
            await self._emit(event)

    # --- stop criteria ---

    def thresholds_met(self) -> bool:
        return self.scores.thresholds_met(
            content_length=self.content_length,
            source_count=len(self.sources),
        )

    def stop_reason(self) -> str | None:
        if self.iteration >= self.limits.max_iterations:
            return "max_iterations"
        if self.accountant.exhausted:
            return "budget"
        if self.elapsed >= self.limits.max_execution_seconds:
            return "time"
        if self.thresholds_met():
            return "thresholds"
        if self._validator_stop:
            return "validator"
        return None

    def _out_of_time(self) -> bool:
        return self.elapsed >= self.limits.max_execution_seconds

    # --- loop ---

    async def run(self) -> IterationOutcome:
        self._started_at = self._clock()
        reason = self.stop_reason()
        if reason is not None and self.task.phase == TaskPhase.PLANNING:
            await self._enter(TaskPhase.SEARCHING, "Research criteria already satisfied")
        while reason is None:
            self.iteration += 1
            await self._enter(
                TaskPhase.SEARCHING,
                f"Research round {self.iteration}",
                queued=len(self.queue),
            )

            calls = await self._search_round()
            if self.iteration <= self.limits.discovery_iterations and not self._out_of_time():
                calls += await self._discovery_round()
            if self.iteration == 1 and not self._out_of_time():
                calls += await self._map_authority_domains()
            if not self._out_of_time():
                calls += await self._scrape_round()

            self._rescore()
            self.accountant.commit_round()

            if self._should_validate():
                await self.validate(loop_phase=self.task.phase)

            log_service.log_research_step(
                self.task.id,
                "iteration",
                "completed",
                {
                    "iteration": self.iteration,
                    "sources": len(self.sources),
                    "content_length": self.content_length,
                    "credits": self.accountant.reported,
                    "confidence": self.scores.confidence,
                    "coverage": self.scores.coverage,
                },
            )

            reason = self.stop_reason()
            if reason is None and not len(self.queue):
                self._refill()
                if not len(self.queue) and calls == 0 and not self._scrape_pending():
                    reason = "exhausted"

        log_service.log_event(
            event_type="iteration_stopped",
            message=f"Iteration stopped: {reason}",
            task_id=self.task.id,
            iterations=self.iteration,
            credits=self.accountant.reported,
        )
        return self.outcome(reason)

    def outcome(self, reason: str) -> IterationOutcome:
        notes: list[str] = []
        if len(self.sources) < 2:
            notes.append("Limited sources available. Findings should be verified independently.")
        if self.scores.confidence < 0.7:
            notes.append("Confidence level moderate. Recommend verification.")
        if not self.scraped and self.failed_urls:
            notes.append("No pages could be read in full. Findings rely on search summaries.")
        return IterationOutcome(
            sources=list(self.sources.values()),
            content=self.content,
            confidence=self.scores.confidence,
            coverage=self.scores.coverage,
            iterations=self.iteration,
            stop_reason=reason,
            gaps=list(self.gaps),
            contradictions=list(self.contradictions),
            notes=notes,
        )

    # --- search ---

    async def _run_search(self, spec: SearchSpec) -> Any:
        return await self.search.search(spec.query, recency=recency_for(self.plan.category))

    async def _search_round(self) -> int:
        if not self.search.configured:
            return 0
        specs = self.queue.pop_many(self.limits.searches_per_iteration)
        calls = 0
        batch_size = self.limits.search_batch_size
        start = 0
        while start < len(specs):
            affordable = self.accountant.remaining // max(self.limits.cost_per_search, 1)
            if affordable <= 0 or self._out_of_time():
                self.queue.requeue(specs[start:])
                break
            batch = specs[start : start + min(batch_size, affordable)]
            start += len(batch)
            await self._enter(
                TaskPhase.SEARCHING,
                "Searching: " + "; ".join(s.purpose for s in batch),
            )
            results = await asyncio.gather(*(self._run_search(s) for s in batch), return_exceptions=True)
            calls += len(batch)
            for spec, result in zip(batch, results):
                if isinstance(result, BaseException) or result is None:
                    if isinstance(result, BaseException):
                        log_service.log_event(
                            event_type="search_error",
                            message="Search call raised",
                            query=spec.query[:120],
                            error=str(result),
                        )
                    continue
                self._accept_search(spec, result)
        return calls

    def _accept_search(self, spec: SearchSpec, result: Any) -> None:
        self.accountant.record_search()
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
        self._append_content(f"### Search: {spec.query}\n_{spec.purpose} ({stamp})_\n{result.prose}")
        for rank, url in enumerate(result.citations):
            self.add_source(
                url,
                SourceType.SEARCH,
                relevance=max(1.0 - rank * SEARCH_RELEVANCE_DECAY, MIN_CITATION_RELEVANCE),
            )

    # --- discovery ---

    async def _discovery_round(self) -> int:
        if self.discovery is None or not self.discovery.configured or self.accountant.exhausted:
            return 0
        base = " ".join(self.task.query.split())
        queries = [base]
        if str(date.today().year) not in base:
            queries.append(f"{base} {date.today().year}")
        if self.iteration > 1:
            queries = queries[1:] or queries

        await self._enter(TaskPhase.SEARCHING, "Discovering additional sources")
        results = await asyncio.gather(
            *(
                self.discovery.discover(q, limit=self.limits.discovery_limit, prefetch=(i == 0))
                for i, q in enumerate(queries)
            ),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException) or not result:
                continue
            for page in result:
                source = self.add_source(
                    page.url,
                    SourceType.DISCOVERY,
                    relevance=DISCOVERY_RELEVANCE,
                    title=page.title,
                    snippet=page.description[:SNIPPET_CHARS],
                )
                if source is not None and page.markdown:
                    self._append_content(
                        f"### Discovered: {page.title or source.url}\n{page.markdown[:PREFETCH_CHARS]}"
                    )
        return len(queries)

    async def _map_authority_domains(self) -> int:
        if self.discovery is None or not self.discovery.configured:
            return 0
        domains = [d for d in self.plan.authority_domains if d][:MAX_AUTHORITY_DOMAINS]
        if not domains:
            return 0
        terms = key_terms(self.task.query)
        await self._enter(TaskPhase.SEARCHING, "Mapping authority sources: " + ", ".join(domains))
        results = await asyncio.gather(
            *(self.discovery.map_domain(d, search=terms, limit=AUTHORITY_MAP_LIMIT) for d in domains),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException) or not result:
                continue
            for url in result:
                self.add_source(url, SourceType.DISCOVERY, relevance=AUTHORITY_RELEVANCE)
        return len(domains)

    # --- scrape ---

    def _scrape_candidates(self) -> list[str]:
        def open_(url: str) -> bool:
            return url not in self.scraped and url not in self.failed_urls

        ranked = sorted(
            (s for s in self.sources.values() if s.source_type != SourceType.SCRAPE and open_(s.url)),
            key=lambda s: -s.relevance,
        )
        candidates = [s.url for s in ranked]

        for url in self.plan.follow_up_urls:
            normalized = web_utils.normalize_url(url)
            if normalized and open_(normalized) and normalized not in candidates:
                candidates.append(normalized)

        covered = {web_utils.extract_domain(u) for u in self.sources}
        for domain in self.plan.authority_domains:
            root = web_utils.normalize_url(domain)
            if root and web_utils.extract_domain(root) not in covered and open_(root) and root not in candidates:
                candidates.append(root)
        return candidates

    def _scrape_pending(self) -> bool:
        if self.scraper is None or not self.scraper.configured:
            return False
        return bool(self._scrape_candidates())

    async def _scrape_round(self) -> int:
        if self.scraper is None or not self.scraper.configured:
            return 0
        affordable = self.accountant.remaining // max(self.limits.cost_per_scrape, 1)
        candidates = self._scrape_candidates()[: min(self.limits.max_scrape_per_round, affordable)]
        if not candidates:
            return 0

        extracting = self.plan.category == QueryCategory.SUPPLIER
        schema = SUPPLIER_EXTRACTION_SCHEMA if extracting else None
        phase = TaskPhase.EXTRACTING if extracting else TaskPhase.BROWSING
        calls = 0
        batch_size = self.limits.scrape_batch_size
        for start in range(0, len(candidates), batch_size):
            if self._out_of_time():
                break
            batch = candidates[start : start + batch_size]
            verb = "Extracting data from" if extracting else "Browsing"
            await self._enter(phase, f"{verb}: " + ", ".join(web_utils.extract_domain(u) for u in batch))
            results = await asyncio.gather(
                *(self.scraper.scrape(url, extraction_schema=schema) for url in batch),
                return_exceptions=True,
            )
            calls += len(batch)
            for url, result in zip(batch, results):
                if isinstance(result, BaseException) or result is None:
                    self.failed_urls.add(url)
                    continue
                self._accept_scrape(url, result)
        return calls

    def _accept_scrape(self, url: str, result: Any) -> None:
        self.accountant.record_scrape()
        self.scraped.add(url)
        text = web_utils.clean_content(result.markdown, self.limits.scrape_content_chars)
        block = f"### Scraped: {result.title or url}\n{text}"
        if result.structured:
            block += f"\n\n```json\n{json.dumps(result.structured, indent=2, default=str)}\n```"
        self._append_content(block)
        self.add_source(
            url,
            SourceType.SCRAPE,
            relevance=EXTRACTION_RELEVANCE if result.structured else SCRAPE_RELEVANCE,
            title=result.title,
            snippet=text[:SNIPPET_CHARS],
        )

    # --- scoring / validation ---

    def _rescore(self) -> None:
        self.scores.update(
            content_length=self.content_length,
            source_count=len(self.sources),
            unique_domains=self.unique_domains,
            scrape_count=len(self.scraped),
        )

    def _should_validate(self) -> bool:
        if self.validator is None or self.validator.llm is None:
            return False
        if self.iteration % self.limits.validate_every == 0:
            return True
        return self._last_validated_iteration == 0 and self.scores.confidence >= self.limits.validation_soft_threshold

    def _required_points(self) -> list[str]:
        if self.deconstruction is not None and self.deconstruction.essential_data_points:
            return self.deconstruction.essential_data_points
        return self.plan.validation_criteria

    async def validate(self, *, loop_phase: TaskPhase, merge_queue: bool = True) -> bool:
        """Run the validator once; returns True when its result was applied."""
        if self.validator is None:
            return False
        self._last_validated_iteration = self.iteration
        await self._publish(
            streaming.iteration_progress(
                loop_phase,
                "Cross-referencing and verifying findings",
                iteration=self.iteration,
                source_count=len(self.sources),
                confidence=self.scores.confidence,
                coverage=self.scores.coverage,
            )
        )
        result = await self.validator.validate(
            self.task.query,
            content=self.content,
            source_count=len(self.sources),
            domain_count=self.unique_domains,
            scrape_count=len(self.scraped),
            required=self._required_points(),
            max_chars=self.limits.validator_content_chars,
        )
        if result is None:
            return False

        self.scores.apply_validation(
            result.confidence,
            result.coverage,
            content_length=self.content_length,
            source_count=len(self.sources),
            unique_domains=self.unique_domains,
            scrape_count=len(self.scraped),
        )
        for contradiction in result.contradictions:
            if contradiction and contradiction not in self.contradictions:
                self.contradictions.append(contradiction)
        for gap in result.gaps:
            if gap.description not in self.gaps:
                self.gaps.append(gap.description)
        self._validator_stop = bool(result.stop_criteria_met) and bool(self.sources)

        if merge_queue:
            for gap in result.gaps:
                text = gap.suggested_search or gap.description
                self.queue.push(SearchSpec(text, f"Gap: {gap.description[:80]}", VALIDATOR_PRIORITY))
            for text in result.additional_searches:
                self.queue.push(SearchSpec(text, "Validator follow-up", VALIDATOR_PRIORITY))
            for url in result.scrape_urls:
                self.add_source(url, SourceType.DISCOVERY, relevance=SUGGESTED_URL_RELEVANCE)

        log_service.log_research_step(
            self.task.id,
            "validation",
            "completed",
            {
                "iteration": self.iteration,
                "confidence": result.confidence,
                "coverage": result.coverage,
                "gaps": len(result.gaps),
                "contradictions": len(result.contradictions),
            },
        )
        return True

    async def final_validation(self) -> bool:
        """Validate once more unless the last round was already validated."""
        if self.validator is None or self.validator.llm is None:
            return False
        if self.iteration and self._last_validated_iteration == self.iteration:
            return False
        return await self.validate(loop_phase=TaskPhase.VALIDATING, merge_queue=False)

    def _refill(self) -> None:
        if self.iteration >= self.limits.max_iterations:
            return
        for spec in refill_searches(
            self.task.query,
            self.plan.category,
            gaps=list(self.gaps),
            seen=self.queue.seen,
            limit=self.limits.searches_per_iteration,
        ):
            self.queue.push(spec)
