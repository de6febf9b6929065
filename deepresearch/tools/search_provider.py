from __future__ import annotations

from dataclasses import dataclass, field

from deepresearch.config import Settings, settings as default_settings
from deepresearch.models.research import QueryCategory
from deepresearch.services import logger as log_service
from deepresearch.services.retry import retry_with_backoff
from deepresearch.tools import perplexity_search, tavily_search


@dataclass
class SearchResponse:
    prose: str
    citations: list[str] = field(default_factory=list)
    provider: str = ""
    fallback_from: str | None = None
    fallback_reason: str | None = None


def recency_for(category: QueryCategory) -> str | None:
    """Trend queries prefer the most recent results."""
    if category == QueryCategory.TREND:
        return "month"
    if category == QueryCategory.MARKET:
        return "year"
    return None


class SearchClient:
    """Web search: query -> prose answer + citation URLs.

    Perplexity is primary; Tavily is used when Perplexity is unconfigured,
    fails, or answers with nothing.
    """

    def __init__(self, config: Settings | None = None):
        self.config = config or default_settings

    @property
    def providers(self) -> list[str]:
        names: list[str] = []
        if self.config.perplexity_api_key:
            names.append("perplexity")
        if self.config.tavily_api_key and (self.config.search_fallback_to_tavily or not names):
            names.append("tavily")
        return names

    @property
    def configured(self) -> bool:
        return bool(self.providers)

    async def _call(self, provider: str, query: str, recency: str | None) -> tuple[str, list[str]] | None:
        if provider == "perplexity":
            return await retry_with_backoff(
                perplexity_search.search,
                query,
                recency=recency,
                api_key=self.config.perplexity_api_key,
                model=self.config.perplexity_model,
                timeout=self.config.search_timeout_seconds,
                max_attempts=self.config.provider_max_attempts,
            )
        if provider == "tavily":
            return await retry_with_backoff(
                tavily_search.search,
                query,
                recency=recency,
                api_key=self.config.tavily_api_key,
                timeout=self.config.search_timeout_seconds,
                max_attempts=self.config.provider_max_attempts,
            )
        raise ValueError(f"Unsupported search provider: {provider}")

    async def search(self, query: str, *, recency: str | None = None) -> SearchResponse | None:
        providers = self.providers
        fallback_from: str | None = None
        fallback_reason: str | None = None

        for provider in providers:
            result = await self._call(provider, query, recency)
            if result is None:
                fallback_from, fallback_reason = provider, "call failed"
                continue
            prose, citations = result
            if not prose and not citations:
                fallback_from, fallback_reason = provider, "empty answer"
                continue
            return SearchResponse(
                prose=prose,
                citations=citations,
                provider=provider,
                fallback_from=fallback_from if fallback_from != provider else None,
                fallback_reason=fallback_reason if fallback_from != provider else None,
            )

        log_service.log_event(
            event_type="search_failed",
            message="No search provider returned results",
            query=query[:120],
            providers=providers,
            reason=fallback_reason,
        )
        return None
