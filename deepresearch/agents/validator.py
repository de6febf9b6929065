from __future__ import annotations

from deepresearch.agents.base import BaseAgent
from deepresearch.models.schemas import ValidationPayload
from deepresearch.services.prompt_store import render_prompt
from deepresearch.tools import web_utils


def _clamp(value: float) -> float:
    return max(0.0, min(float(value), 1.0))


class ResearchValidator(BaseAgent):
    """Scores accumulated findings and proposes follow-up work.

    Stateless per call. A None result means the caller keeps its own scores.
    """

    name = "validator"

    async def validate(
        self,
        query: str,
        *,
        content: str,
        source_count: int,
        domain_count: int,
        scrape_count: int,
        required: list[str] | None = None,
        max_chars: int = 6000,
    ) -> ValidationPayload | None:
        result = await self._complete_json(
            render_prompt("validator.system_prompt"),
            render_prompt(
                "validator.user_prompt",
                query=query,
                required="\n".join(f"- {item}" for item in required or []) or "- (not specified)",
                source_count=source_count,
                domain_count=domain_count,
                scrape_count=scrape_count,
                content=content[:max_chars],
            ),
            ValidationPayload,
        )
        if result is None:
            return None

        result.confidence = _clamp(result.confidence)
        result.coverage = _clamp(result.coverage)
        result.additional_searches = [s.strip() for s in result.additional_searches if s and s.strip()][:4]
        result.scrape_urls = [u for u in (web_utils.normalize_url(u) for u in result.scrape_urls) if u][:4]
        result.gaps = [g for g in result.gaps if g.description.strip()][:6]
        return result
