from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any
from urllib.parse import urlparse
from uuid import uuid4


class QueryCategory(StrEnum):
    SUPPLIER = "supplier"
    TREND = "trend"
    MARKET = "market"
    SUSTAINABILITY = "sustainability"
    GENERAL = "general"


class TaskPhase(StrEnum):
    PLANNING = "planning"
    SEARCHING = "searching"
    BROWSING = "browsing"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class SourceType(StrEnum):
    DISCOVERY = "discovery"
    SEARCH = "search"
    SCRAPE = "scrape"


# discovery < search < scrape; a source may only move up this ladder.
SOURCE_TYPE_RANK = {
    SourceType.DISCOVERY: 0,
    SourceType.SEARCH: 1,
    SourceType.SCRAPE: 2,
}

ITERATION_PHASES = frozenset({TaskPhase.SEARCHING, TaskPhase.BROWSING, TaskPhase.EXTRACTING})
TERMINAL_PHASES = frozenset({TaskPhase.COMPLETED, TaskPhase.FAILED})

_ALLOWED_TRANSITIONS: dict[TaskPhase, frozenset[TaskPhase]] = {
    TaskPhase.PLANNING: frozenset({TaskPhase.SEARCHING}),
    TaskPhase.SEARCHING: ITERATION_PHASES | {TaskPhase.VALIDATING},
    TaskPhase.BROWSING: ITERATION_PHASES | {TaskPhase.VALIDATING},
    TaskPhase.EXTRACTING: ITERATION_PHASES | {TaskPhase.VALIDATING},
    TaskPhase.VALIDATING: frozenset({TaskPhase.GENERATING}),
    TaskPhase.GENERATING: frozenset({TaskPhase.COMPLETED}),
    TaskPhase.COMPLETED: frozenset(),
    TaskPhase.FAILED: frozenset(),
}


class PhaseTransitionError(RuntimeError):
    pass


def can_transition(current: TaskPhase, target: TaskPhase) -> bool:
    if current in TERMINAL_PHASES:
        return False
    if target == TaskPhase.FAILED:
        return True
    if target == current and current in ITERATION_PHASES:
        return True
    return target in _ALLOWED_TRANSITIONS[current]


def _host(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Source:
    url: str
    title: str
    snippet: str = ""
    source_type: SourceType = SourceType.SEARCH
    relevance: float = 0.5
    timestamp: datetime = field(default_factory=_utcnow)
    confidence: float | None = None

    def upgrade(
        self,
        source_type: SourceType,
        *,
        relevance: float | None = None,
        title: str | None = None,
        snippet: str | None = None,
    ) -> bool:
        """Raise type/relevance in place. Never downgrades. Returns True if changed."""
        changed = False
        if SOURCE_TYPE_RANK[source_type] > SOURCE_TYPE_RANK[self.source_type]:
            self.source_type = source_type
            changed = True
        if relevance is not None and relevance > self.relevance:
            self.relevance = min(relevance, 1.0)
            changed = True
        if title and (not self.title or self.title in (self.url, _host(self.url))):
            self.title = title
            changed = True
        if snippet and not self.snippet:
            self.snippet = snippet
            changed = True
        return changed

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "url": self.url,
            "title": self.title,
            "snippet": self.snippet,
            "type": self.source_type.value,
            "relevance_score": round(self.relevance, 3),
            "timestamp": self.timestamp.isoformat(),
        }
        if self.confidence is not None:
            data["confidence"] = round(self.confidence, 3)
        return data


@dataclass(slots=True)
class SearchSpec:
    query: str
    purpose: str
    priority: int = 5

    def key(self) -> str:
        return " ".join(self.query.lower().split())


@dataclass(slots=True)
class ResearchPlan:
    category: QueryCategory
    complexity: str = "standard"  # simple | standard | complex
    searches: list[SearchSpec] = field(default_factory=list)
    authority_domains: list[str] = field(default_factory=list)
    follow_up_urls: list[str] = field(default_factory=list)
    validation_criteria: list[str] = field(default_factory=list)
    expected_output: str = "report"  # table | report | list | comparison
    reasoning: str = ""
    from_fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "query_type": self.category.value,
            "complexity": self.complexity,
            "searches": [
                {"query": s.query, "purpose": s.purpose, "priority": s.priority}
                for s in self.searches
            ],
            "authority_domains": self.authority_domains,
            "follow_up_urls": self.follow_up_urls,
            "validation_criteria": self.validation_criteria,
            "expected_output_format": self.expected_output,
            "reasoning": self.reasoning,
            "fallback": self.from_fallback,
        }


@dataclass(slots=True)
class MetricsSnapshot:
    content_length: int
    source_count: int
    unique_domains: int
    scrape_count: int
    confidence: float
    coverage: float


@dataclass(slots=True)
class ResearchTask:
    user_id: str
    query: str
    category: QueryCategory
    conversation_id: str | None = None
    domain: str = "all"
    id: str = field(default_factory=lambda: str(uuid4()))
    phase: TaskPhase = TaskPhase.PLANNING
    plan: ResearchPlan | None = None
    sources: list[Source] = field(default_factory=list)
    final_answer: str = ""
    credits_used: int = 0
    error: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def advance(self, target: TaskPhase) -> None:
        if not can_transition(self.phase, target):
            raise PhaseTransitionError(f"Illegal phase transition {self.phase} -> {target}")
        self.phase = target
        if target in TERMINAL_PHASES:
            self.completed_at = _utcnow()

    def fail(self, reason: str) -> None:
        if self.is_terminal:
            return
        self.error = reason
        self.advance(TaskPhase.FAILED)
