from __future__ import annotations

from fastapi import Depends, Header, HTTPException

from deepresearch.agents.orchestrator import ResearchServices
from deepresearch.config import settings
from deepresearch.llm_client import SUPPORTED_MODELS
from deepresearch.services.supabase import SupabaseResearchStore
from deepresearch.tools.firecrawl import DiscoveryClient, ScrapeClient
from deepresearch.tools.search_provider import SearchClient

_store: SupabaseResearchStore | None = None


def get_available_models() -> list[dict[str, str]]:
    """Return the models a caller may pick for research."""
    return [
        {"id": model_id, "name": meta["name"], "description": meta["description"]}
        for model_id, meta in SUPPORTED_MODELS.items()
    ]


def bearer_token(authorization: str | None = Header(default=None)) -> str | None:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return authorization.strip() or None


def _base_store() -> SupabaseResearchStore:
    global _store
    if _store is None:
        _store = SupabaseResearchStore(config=settings)
    return _store


def get_research_services(token: str | None = Depends(bearer_token)) -> ResearchServices:
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(status_code=503, detail="Research store not configured")
    base = _base_store()
    store = base.for_token(token) if token else base
    return ResearchServices(
        identity=store,
        store=store,
        ledger=store,
        search=SearchClient(settings),
        scraper=ScrapeClient(settings),
        discovery=DiscoveryClient(settings),
    )
