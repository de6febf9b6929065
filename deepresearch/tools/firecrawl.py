"""Firecrawl-backed scrape and discovery clients."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx

from deepresearch.config import Settings, settings as default_settings
from deepresearch.services import logger as log_service
from deepresearch.services.retry import retry_with_backoff
from deepresearch.tools import web_utils

SUPPLIER_EXTRACTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "company_name": {"type": "string"},
        "location": {"type": "string"},
        "moq": {"type": "string"},
        "certifications": {"type": "array", "items": {"type": "string"}},
        "price_range": {"type": "string"},
        "contact": {"type": "string"},
    },
}


@dataclass(slots=True)
class ScrapeRequest:
    url: str
    timeout_profile: str = "standard"  # standard | extended
    extraction_schema: dict[str, Any] | None = None


@dataclass(slots=True)
class ScrapeResult:
    url: str
    markdown: str
    title: str = ""
    description: str = ""
    links: list[str] = field(default_factory=list)
    structured: dict[str, Any] | None = None


@dataclass(slots=True)
class DiscoveredPage:
    url: str
    title: str = ""
    description: str = ""
    markdown: str = ""


Poster = Callable[[str, dict[str, Any], float], Awaitable[dict[str, Any]]]


class FirecrawlClient:
    """Thin async wrapper over the Firecrawl v1 REST API."""

    def __init__(self, config: Settings | None = None, *, poster: Poster | None = None):
        self.config = config or default_settings
        self._poster = poster

    @property
    def configured(self) -> bool:
        return bool(self.config.firecrawl_api_key or self._poster)

    def _endpoint(self, path: str) -> str:
        base = self.config.firecrawl_base_url.strip() or "https://api.firecrawl.dev"
        return base.rstrip("/") + path

    async def _post(self, path: str, payload: dict[str, Any], timeout: float) -> dict[str, Any]:
        if self._poster is not None:
            return await self._poster(path, payload, timeout)

        headers = {"Content-Type": "application/json"}
        if self.config.firecrawl_api_key:
            headers["Authorization"] = f"Bearer {self.config.firecrawl_api_key}"
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            response = await client.post(self._endpoint(path), json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        if not isinstance(data, dict):
            raise RuntimeError(f"Unexpected Firecrawl response for {path}")
        if data.get("success") is False:
            raise RuntimeError(str(data.get("error") or "Firecrawl reported failure"))
        return data


class ScrapeClient(FirecrawlClient):
    """URL -> main-content markdown, outbound links and optional structured data."""

    async def _scrape_once(self, request: ScrapeRequest) -> ScrapeResult:
        extended = request.timeout_profile == "extended"
        timeout = (
            self.config.scrape_extended_timeout_seconds if extended else self.config.scrape_timeout_seconds
        )
        formats: list[Any] = ["markdown", "links"]
        if request.extraction_schema:
            formats.append("json")
        payload: dict[str, Any] = {
            "url": request.url,
            "formats": formats,
            "onlyMainContent": True,
            "timeout": int(timeout * 1000),
        }
        if request.extraction_schema:
            payload["jsonOptions"] = {"schema": request.extraction_schema}
        if extended:
            payload["waitFor"] = 3000

        data = await asyncio.wait_for(self._post("/v1/scrape", payload, timeout), timeout=timeout + 5)
        body = data.get("data", data)
        if not isinstance(body, dict):
            raise RuntimeError("Firecrawl scrape response missing data")
        markdown = str(body.get("markdown") or "")
        if not markdown.strip():
            raise RuntimeError("Firecrawl scrape returned empty content")
        metadata = body.get("metadata") if isinstance(body.get("metadata"), dict) else {}
        links = [link for link in body.get("links") or [] if isinstance(link, str)]
        structured = body.get("json") if isinstance(body.get("json"), dict) else None
        return ScrapeResult(
            url=request.url,
            markdown=markdown,
            title=str(metadata.get("title") or ""),
            description=str(metadata.get("description") or ""),
            links=links,
            structured=structured or None,
        )

    async def scrape(
        self,
        url: str,
        *,
        extraction_schema: dict[str, Any] | None = None,
    ) -> ScrapeResult | None:
        """Scrape with the standard timeout, then once more with the extended profile."""
        target = web_utils.normalize_url(url)
        if not target:
            log_service.log_event(event_type="scrape_skipped", message="Invalid URL", url=str(url)[:200])
            return None

        result = await retry_with_backoff(
            self._scrape_once,
            ScrapeRequest(url=target, extraction_schema=extraction_schema),
            max_attempts=1,
        )
        if result is not None:
            return result

        return await retry_with_backoff(
            self._scrape_once,
            ScrapeRequest(url=target, timeout_profile="extended", extraction_schema=extraction_schema),
            max_attempts=max(self.config.provider_max_attempts - 1, 1),
        )


class DiscoveryClient(FirecrawlClient):
    """Search the web for candidate URLs and enumerate URLs under a domain."""

    async def _search_once(self, query: str, limit: int, prefetch: bool) -> list[DiscoveredPage]:
        payload: dict[str, Any] = {"query": query, "limit": limit}
        if prefetch:
            payload["scrapeOptions"] = {"formats": ["markdown"], "onlyMainContent": True}
        data = await self._post("/v1/search", payload, self.config.discovery_timeout_seconds)
        pages: list[DiscoveredPage] = []
        for item in data.get("data") or []:
            if not isinstance(item, dict):
                continue
            url = web_utils.normalize_url(str(item.get("url") or ""))
            if not url:
                continue
            pages.append(
                DiscoveredPage(
                    url=url,
                    title=str(item.get("title") or ""),
                    description=str(item.get("description") or ""),
                    markdown=str(item.get("markdown") or ""),
                )
            )
        return pages[:limit]

    async def _map_once(self, url: str, search: str, limit: int) -> list[str]:
        payload: dict[str, Any] = {"url": url, "limit": limit}
        if search:
            payload["search"] = search
        data = await self._post("/v1/map", payload, self.config.discovery_timeout_seconds)
        links = data.get("links") or data.get("data") or []
        urls: list[str] = []
        for link in links:
            raw = link.get("url") if isinstance(link, dict) else link
            normalized = web_utils.normalize_url(str(raw or ""))
            if normalized:
                urls.append(normalized)
        return urls[:limit]

    async def discover(self, query: str, *, limit: int = 8, prefetch: bool = False) -> list[DiscoveredPage]:
        pages = await retry_with_backoff(
            self._search_once,
            query,
            limit,
            prefetch,
            timeout=self.config.discovery_timeout_seconds + 5,
            max_attempts=self.config.provider_max_attempts,
        )
        return pages or []

    async def map_domain(self, url: str, *, search: str = "", limit: int = 10) -> list[str]:
        target = web_utils.normalize_url(url)
        if not target:
            return []
        urls = await retry_with_backoff(
            self._map_once,
            target,
            search,
            limit,
            timeout=self.config.discovery_timeout_seconds + 5,
            max_attempts=self.config.provider_max_attempts,
        )
        return urls or []
