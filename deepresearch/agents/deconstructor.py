from __future__ import annotations

from deepresearch.agents.base import BaseAgent
from deepresearch.models.research import QueryCategory
from deepresearch.models.schemas import QueryDeconstruction
from deepresearch.services.prompt_store import render_prompt


class QueryDeconstructor(BaseAgent):
    """Turns a raw query into a structured research brief. Advisory only."""

    name = "deconstructor"

    async def deconstruct(self, query: str, category: QueryCategory) -> QueryDeconstruction | None:
        result = await self._complete_json(
            render_prompt("deconstructor.system_prompt"),
            render_prompt("deconstructor.user_prompt", query=query, category=category.value),
            QueryDeconstruction,
        )
        if result is None:
            return None
        result.prioritized_searches = [s for s in result.prioritized_searches if s.query.strip()][:6]
        result.authority_domains = [d.strip() for d in result.authority_domains if d and d.strip()][:6]
        return result


def describe(deconstruction: QueryDeconstruction | None) -> str:
    """Compact text form of a brief, for feeding into later prompts."""
    if deconstruction is None:
        return "(none)"
    lines = [f"Goal: {deconstruction.primary_goal}"]
    if deconstruction.decision_context:
        lines.append(f"Decision: {deconstruction.decision_context}")
    scope = ", ".join(
        s
        for s in (
            deconstruction.geographic_scope,
            deconstruction.temporal_scope,
            deconstruction.segment_scope,
        )
        if s
    )
    if scope:
        lines.append(f"Scope: {scope}")
    if deconstruction.essential_data_points:
        lines.append("Essential: " + "; ".join(deconstruction.essential_data_points))
    if deconstruction.desirable_data_points:
        lines.append("Desirable: " + "; ".join(deconstruction.desirable_data_points))
    if deconstruction.success_criteria:
        lines.append("Success: " + "; ".join(deconstruction.success_criteria))
    return "\n".join(lines)
