from __future__ import annotations

from typing import Any

import httpx

from deepresearch.config import settings

PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"

SYSTEM_PROMPT = (
    "You are a fashion industry research assistant. Provide detailed, factual "
    "information with sources. Focus on current, verified data."
)

RECENCY_FILTERS = {"day", "week", "month", "year"}


async def search(
    query: str,
    *,
    recency: str | None = None,
    timeout: float = 60.0,
    api_key: str | None = None,
    model: str | None = None,
) -> tuple[str, list[str]]:
    """Ask Perplexity for a sourced prose answer; returns (prose, citation_urls)."""
    api_key = api_key or settings.perplexity_api_key
    if not api_key:
        raise RuntimeError("PERPLEXITY_API_KEY is not configured")

    body: dict[str, Any] = {
        "model": model or settings.perplexity_model,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": query},
        ],
        "max_tokens": 1500,
    }
    if recency in RECENCY_FILTERS:
        body["search_recency_filter"] = recency

    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.post(
            PERPLEXITY_URL,
            json=body,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )
        response.raise_for_status()
        payload = response.json()

    choices = payload.get("choices") or []
    prose = ""
    if choices:
        prose = ((choices[0].get("message") or {}).get("content") or "").strip()
    citations = [c for c in payload.get("citations") or [] if isinstance(c, str)]
    return prose, citations
