from __future__ import annotations

from datetime import date

from deepresearch.agents.base import BaseAgent
from deepresearch.agents.deconstructor import describe
from deepresearch.models.research import QueryCategory, ResearchPlan, SearchSpec
from deepresearch.models.schemas import PlanPayload, QueryDeconstruction
from deepresearch.services import logger as log_service
from deepresearch.services.prompt_store import render_prompt
from deepresearch.tools import web_utils

OUTPUT_FORMATS = ("table", "report", "list", "comparison")
COMPLEXITIES = ("simple", "standard", "complex")

# Lower number runs first.
PLAN_PRIORITY_MAX = 5
VALIDATOR_PRIORITY = 7
REFILL_PRIORITY = 9

MAX_PLAN_SEARCHES = 14

SUPPLIER_REGIONS = ("Europe", "Asia", "Turkey and North Africa")

DEPTH_MODIFIERS: dict[QueryCategory, tuple[str, ...]] = {
    QueryCategory.SUPPLIER: (
        "detailed supplier profiles and capabilities",
        "regional comparison of manufacturers",
        "lead times and production capacity",
        "buyer reviews and audit reports",
    ),
    QueryCategory.TREND: (
        "detailed analysis",
        "street style and retail adoption",
        "consumer search and social media signals",
        "regional comparison",
    ),
    QueryCategory.MARKET: (
        "detailed analysis",
        "regional comparison",
        "key players market share",
        "consumer demand drivers",
    ),
    QueryCategory.SUSTAINABILITY: (
        "detailed analysis",
        "regulation and compliance requirements",
        "lifecycle assessment data",
        "brand case studies",
    ),
    QueryCategory.GENERAL: (
        "detailed analysis",
        "latest news",
        "expert commentary",
        "regional comparison",
    ),
}


def _clean(text: str) -> str:
    return " ".join((text or "").split())


def fallback_plan(query: str, category: QueryCategory) -> ResearchPlan:
    """Deterministic plan used when the LLM planner is unavailable or invalid."""
    q = _clean(query)
    year = date.today().year
    criteria = ["Source reliability", "Data currency", "Information accuracy"]

    if category == QueryCategory.SUPPLIER:
        searches = [
            SearchSpec(f"{q} manufacturers suppliers", "Find relevant suppliers", 1),
            SearchSpec(f"{q} MOQ pricing wholesale", "Get pricing and MOQ details", 1),
            SearchSpec(
                f"{q} certifications GOTS OEKO-TEX ISO compliance",
                "Verify supplier certifications",
                2,
            ),
            *(
                SearchSpec(f"{q} suppliers {region}", f"Regional sourcing options: {region}", 3)
                for region in SUPPLIER_REGIONS
            ),
            SearchSpec(
                f"{q} trade directory B2B sourcing platform",
                "Trade directory listings",
                4,
            ),
        ]
        expected = "table"
    elif category == QueryCategory.TREND:
        searches = [
            SearchSpec(f"{q} fashion trends {year} {year + 1}", "Current trend analysis", 1),
            SearchSpec(f"{q} fashion week runway", "Runway validation", 2),
            SearchSpec(f"{q} trend forecast retail adoption", "Commercial adoption", 3),
        ]
        expected = "report"
    elif category == QueryCategory.MARKET:
        searches = [
            SearchSpec(f"{q} market analysis size growth", "Market overview", 1),
            SearchSpec(f"{q} competition brands pricing", "Competitive landscape", 2),
            SearchSpec(f"{q} market forecast {year}", "Forward outlook", 3),
        ]
        expected = "report"
    elif category == QueryCategory.SUSTAINABILITY:
        searches = [
            SearchSpec(
                f"{q} sustainable certifications GOTS OEKO-TEX",
                "Certification research",
                1,
            ),
            SearchSpec(f"{q} eco-friendly materials suppliers", "Sustainable options", 2),
            SearchSpec(f"{q} environmental impact data", "Impact evidence", 3),
        ]
        expected = "report"
    else:
        searches = [
            SearchSpec(q, "General research", 1),
            SearchSpec(f"{q} industry overview", "Industry context", 2),
            SearchSpec(f"{q} latest news {year}", "Recent developments", 3),
        ]
        expected = "report"

    return ResearchPlan(
        category=category,
        complexity="standard",
        searches=searches[:MAX_PLAN_SEARCHES],
        validation_criteria=criteria,
        expected_output=expected,
        reasoning="Template plan for the detected query type.",
        from_fallback=True,
    )


def refill_searches(
    query: str,
    category: QueryCategory,
    *,
    gaps: list[str],
    seen: set[str],
    limit: int,
) -> list[SearchSpec]:
    """New searches from outstanding gaps, then category depth modifiers."""
    q = _clean(query)
    specs: list[SearchSpec] = []
    keys = set(seen)

    def add(text: str, purpose: str) -> None:
        spec = SearchSpec(_clean(text), purpose, REFILL_PRIORITY)
        if spec.query and spec.key() not in keys and len(specs) < limit:
            keys.add(spec.key())
            specs.append(spec)

    for gap in gaps:
        add(gap, "Fill research gap")
    for modifier in DEPTH_MODIFIERS.get(category, DEPTH_MODIFIERS[QueryCategory.GENERAL]):
        add(f"{q} {modifier}", f"Depth: {modifier}")
    return specs


class ResearchPlanner(BaseAgent):
    name = "planner"

    async def plan(
        self,
        query: str,
        category: QueryCategory,
        deconstruction: QueryDeconstruction | None = None,
    ) -> ResearchPlan:
        payload = await self._complete_json(
            render_prompt("planner.system_prompt"),
            render_prompt(
                "planner.user_prompt",
                query=query,
                category=category.value,
                brief=describe(deconstruction),
            ),
            PlanPayload,
        )
        plan = self._from_payload(payload, category) if payload is not None else None
        if plan is None:
            log_service.log_event(
                event_type="planner_fallback",
                message="Using template research plan",
                category=category.value,
            )
            plan = fallback_plan(query, category)
        return merge_deconstruction(plan, deconstruction)

    @staticmethod
    def _from_payload(payload: PlanPayload, category: QueryCategory) -> ResearchPlan | None:
        searches: list[SearchSpec] = []
        follow_up_urls: list[str] = []
        seen: set[str] = set()
        for step in payload.steps:
            tool = step.tool.lower()
            if tool in ("scrape_url", "extract_structured"):
                url = web_utils.normalize_url(step.url or step.query)
                if url and url not in follow_up_urls:
                    follow_up_urls.append(url)
                continue
            spec = SearchSpec(
                _clean(step.query),
                step.purpose or "Planned search",
                min(max(int(step.priority), 1), PLAN_PRIORITY_MAX),
            )
            if spec.query and spec.key() not in seen:
                seen.add(spec.key())
                searches.append(spec)

        if not searches:
            return None

        fmt = payload.expected_output_format.lower()
        complexity = payload.complexity.lower()
        return ResearchPlan(
            category=category,
            complexity=complexity if complexity in COMPLEXITIES else "standard",
            searches=searches[:MAX_PLAN_SEARCHES],
            authority_domains=[d for d in payload.authority_domains if d][:6],
            follow_up_urls=follow_up_urls,
            validation_criteria=payload.validation_criteria,
            expected_output=fmt if fmt in OUTPUT_FORMATS else "report",
            reasoning=payload.reasoning,
        )


def merge_deconstruction(plan: ResearchPlan, deconstruction: QueryDeconstruction | None) -> ResearchPlan:
    """Fold the brief's searches and authority domains into the plan."""
    if deconstruction is None:
        return plan

    seen = {s.key() for s in plan.searches}
    extra: list[SearchSpec] = []
    for item in deconstruction.prioritized_searches:
        spec = SearchSpec(
            _clean(item.query),
            item.purpose or "Brief search",
            min(max(int(item.priority), 1), PLAN_PRIORITY_MAX),
        )
        if spec.query and spec.key() not in seen:
            seen.add(spec.key())
            extra.append(spec)
    plan.searches = (extra + plan.searches)[:MAX_PLAN_SEARCHES]

    for domain in deconstruction.authority_domains:
        if domain not in plan.authority_domains:
            plan.authority_domains.append(domain)

    fmt = (deconstruction.output_format or "").lower()
    if plan.from_fallback and fmt in OUTPUT_FORMATS:
        plan.expected_output = fmt
    return plan
