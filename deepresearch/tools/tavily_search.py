from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient

from deepresearch.config import settings

TIME_RANGES = {"day", "week", "month", "year"}


async def search(
    query: str,
    *,
    recency: str | None = None,
    max_results: int = 8,
    search_depth: str = "advanced",
    api_key: str | None = None,
) -> tuple[str, list[str]]:
    """Tavily search with a generated answer; returns (prose, result_urls)."""
    api_key = api_key or settings.tavily_api_key
    if not api_key:
        raise RuntimeError("TAVILY_API_KEY is not configured")

    client = AsyncTavilyClient(api_key=api_key)
    kwargs: dict[str, Any] = {
        "query": query,
        "search_depth": search_depth,
        "max_results": max_results,
        "include_answer": True,
    }
    if recency in TIME_RANGES:
        kwargs["time_range"] = recency

    response = await client.search(**kwargs)

    results = response.get("results", []) or []
    answer = (response.get("answer") or "").strip()
    if not answer:
        answer = "\n".join(
            f"{r.get('title', '')}: {r.get('content', '')}".strip(": ")
            for r in results
            if r.get("content")
        )
    urls = [r.get("url", "") for r in results if r.get("url")]
    return answer, urls
