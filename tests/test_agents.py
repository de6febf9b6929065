from __future__ import annotations

import pytest

from conftest import FakeLLM
from deepresearch.agents.deconstructor import QueryDeconstructor, describe
from deepresearch.agents.validator import ResearchValidator
from deepresearch.models.research import QueryCategory


@pytest.mark.asyncio
async def test_deconstructor_caps_searches_and_domains():
    llm = FakeLLM(
        json_replies={
            "deconstructor": {
                "primary_goal": "Shortlist denim mills",
                "geographic_scope": "Portugal",
                "essential_data_points": ["MOQ", "certifications"],
                "prioritized_searches": [{"query": f"denim search {i}"} for i in range(9)] + [{"query": "  "}],
                "authority_domains": [f"site{i}.example.com" for i in range(8)],
            }
        }
    )

    result = await QueryDeconstructor(llm).deconstruct("denim mills in Portugal", QueryCategory.SUPPLIER)

    assert result is not None
    assert len(result.prioritized_searches) == 6
    assert len(result.authority_domains) == 6
    brief = describe(result)
    assert "Goal: Shortlist denim mills" in brief
    assert "Scope: Portugal" in brief
    assert "Essential: MOQ; certifications" in brief


@pytest.mark.asyncio
async def test_deconstructor_failure_is_advisory():
    assert await QueryDeconstructor(FakeLLM()).deconstruct("denim", QueryCategory.GENERAL) is None
    assert describe(None) == "(none)"


@pytest.mark.asyncio
async def test_validator_clamps_and_caps_output():
    llm = FakeLLM(
        json_replies={
            "validator": {
                "confidence": 1.4,
                "coverage": -0.2,
                "stop_criteria_met": True,
                "gaps": [{"description": f"gap {i}"} for i in range(8)] + [{"description": "  "}],
                "additional_searches": ["a", "b", " ", "c", "d", "e"],
                "scrape_urls": ["museum.example.org/denim", "", "https://b.example.com/x"],
            }
        }
    )

    result = await ResearchValidator(llm).validate(
        "denim history",
        content="Findings...",
        source_count=4,
        domain_count=3,
        scrape_count=1,
        required=["Founding year"],
    )

    assert result.confidence == 1.0
    assert result.coverage == 0.0
    assert result.stop_criteria_met
    assert len(result.gaps) == 6
    assert result.additional_searches == ["a", "b", "c", "d"]
    assert result.scrape_urls == ["https://museum.example.org/denim", "https://b.example.com/x"]


@pytest.mark.asyncio
async def test_validator_rejects_payload_without_scores():
    llm = FakeLLM(json_replies={"validator": {"gaps": []}})
    result = await ResearchValidator(llm).validate(
        "denim history", content="", source_count=0, domain_count=0, scrape_count=0
    )
    assert result is None
