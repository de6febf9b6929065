from __future__ import annotations

import asyncio
import re
from typing import Awaitable, Callable

from deepresearch.agents.base import BaseAgent
from deepresearch.errors import ProviderError, SynthesisError
from deepresearch.models.research import QueryCategory, Source
from deepresearch.models.schemas import QueryDeconstruction
from deepresearch.services import logger as log_service
from deepresearch.services.prompt_store import has_prompt, render_prompt
from deepresearch.tools import web_utils

ChunkHandler = Callable[[str], Awaitable[None]]

FALLBACK_CHUNK_SIZE = 50
MIN_FINDINGS_CHARS = 100
MAX_LISTED_SOURCES = 20

_INLINE_CITATION = re.compile(r"\s?(?<!\w)\[(\d{1,3}(?:\s*[,\-–]\s*\d{1,3})*)\](?!\()")
_PAREN_SOURCE = re.compile(r"\s?\((?:sources?|via)\s*:[^)]*\)", re.IGNORECASE)
_SOURCES_HEADING = re.compile(r"\n(?:-{3,}\s*\n)?\s*#{1,6}\s*(?:sources|references)\b.*\Z", re.IGNORECASE | re.DOTALL)


def system_prompt_for(domain: str) -> str:
    base = render_prompt("synthesizer.system_prompt")
    key = f"synthesizer.domains.{domain}"
    if has_prompt(key):
        return base + render_prompt(key)
    return base


def strip_citations(text: str) -> str:
    """Drop inline citation markers and any model-written source section."""
    cleaned = _SOURCES_HEADING.sub("", text)
    cleaned = _INLINE_CITATION.sub("", cleaned)
    cleaned = _PAREN_SOURCE.sub("", cleaned)
    return cleaned.rstrip()


def format_source_list(sources: list[Source]) -> str:
    if not sources:
        return ""
    lines = ["", "---", "", "## Sources"]
    for i, source in enumerate(sources[:MAX_LISTED_SOURCES], start=1):
        domain = web_utils.extract_domain(source.url)
        title = source.title if source.title and source.title != source.url else domain
        lines.append(f"{i}. {title} ({domain})" if domain and title != domain else f"{i}. {title}")
    return "\n".join(lines)


def rank_sources(sources: list[Source]) -> list[Source]:
    """Scraped pages first, then by relevance."""
    order = {"scrape": 0, "search": 1, "discovery": 2}
    return sorted(sources, key=lambda s: (order.get(s.source_type.value, 3), -s.relevance))


class Synthesizer(BaseAgent):
    """Streams the final answer, falling back to a single non-streamed call."""

    name = "synthesizer"

    def build_prompt(
        self,
        query: str,
        *,
        category: QueryCategory,
        findings: str,
        sources: list[Source],
        confidence: float,
        coverage: float,
        notes: list[str],
        expected_format: str,
        deconstruction: QueryDeconstruction | None,
        max_chars: int,
    ) -> str:
        if len(findings.strip()) < MIN_FINDINGS_CHARS:
            findings = render_prompt("synthesizer.no_findings", query=query)
        source_lines = "\n".join(
            f"- {s.title or s.url} ({web_utils.extract_domain(s.url)})" for s in sources[:MAX_LISTED_SOURCES]
        )
        intent = ""
        if deconstruction is not None and deconstruction.primary_goal:
            intent = f"USER INTENT: {deconstruction.primary_goal}\n"
        return render_prompt(
            "synthesizer.user_prompt",
            query=query,
            category=category.value,
            expected_format=expected_format,
            intent=intent,
            confidence=f"{confidence:.2f}",
            coverage=f"{coverage:.2f}",
            findings=findings[:max_chars],
            sources=source_lines or "No external sources. Provide general industry knowledge with clear disclaimers.",
            notes="\n".join(f"- {n}" for n in notes) or "- None recorded.",
        )

    async def synthesize(
        self,
        system: str,
        prompt: str,
        *,
        sources: list[Source],
        on_chunk: ChunkHandler,
        on_restart: Callable[[], Awaitable[None]] | None = None,
        partial_findings: str = "",
    ) -> str:
        """Return the delivered answer: cleaned model text plus a plain source list."""
        if self.llm is None:
            raise SynthesisError("AI service not configured", partial_findings=partial_findings)

        parts: list[str] = []
        try:
            async for chunk in self.llm.stream(system, prompt, caller=self.name):
                parts.append(chunk)
                await on_chunk(chunk)
        except asyncio.CancelledError:
            raise
        except ProviderError as e:
            log_service.log_event(
                event_type="synthesis_stream_failed",
                message="Streaming failed, retrying without streaming",
                error=e.reason,
                streamed_chars=sum(len(p) for p in parts),
            )
            if parts and on_restart is not None:
                await on_restart()
            parts = []

        text = "".join(parts).strip()
        if not text:
            try:
                text = await self.llm.complete(system, prompt, caller=self.name)
            except ProviderError as e:
                raise SynthesisError(
                    "Failed to generate response", partial_findings=partial_findings
                ) from e
            for i in range(0, len(text), FALLBACK_CHUNK_SIZE):
                await on_chunk(text[i : i + FALLBACK_CHUNK_SIZE])

        source_list = format_source_list(sources)
        if source_list:
            await on_chunk("\n" + source_list)
        return strip_citations(text) + ("\n" + source_list if source_list else "")
