from __future__ import annotations

from pydantic import BaseModel, Field


# --- Requests ---


class ResearchRequest(BaseModel):
    query: str
    conversation_id: str | None = Field(default=None, alias="conversationId")
    model: str | None = None
    domain: str | None = None

    model_config = {"populate_by_name": True}


# --- Responses ---


class ModelInfo(BaseModel):
    id: str
    name: str
    description: str


class ModelsResponse(BaseModel):
    models: list[ModelInfo]


# --- LLM structured outputs ---


class DeconstructedSearch(BaseModel):
    query: str
    purpose: str = ""
    priority: int = 5


class QueryDeconstruction(BaseModel):
    """Structured intent produced by the query deconstructor."""

    primary_goal: str = ""
    decision_context: str = ""
    success_criteria: list[str] = []
    geographic_scope: str = ""
    temporal_scope: str = ""
    segment_scope: str = ""
    essential_data_points: list[str] = []
    desirable_data_points: list[str] = []
    output_format: str = "report"
    prioritized_searches: list[DeconstructedSearch] = []
    authority_domains: list[str] = []


class PlannedStep(BaseModel):
    tool: str = "web_search"
    query: str = ""
    url: str = ""
    purpose: str = ""
    priority: int = 5


class PlanPayload(BaseModel):
    query_type: str = ""
    complexity: str = "standard"
    reasoning: str = ""
    steps: list[PlannedStep] = []
    authority_domains: list[str] = []
    validation_criteria: list[str] = []
    expected_output_format: str = "report"


class ResearchGap(BaseModel):
    description: str
    suggested_search: str = ""


class ValidationPayload(BaseModel):
    confidence: float
    coverage: float
    stop_criteria_met: bool = False
    gaps: list[ResearchGap] = []
    contradictions: list[str] = []
    additional_searches: list[str] = []
    scrape_urls: list[str] = []
    notes: str = ""
