from __future__ import annotations

from dataclasses import dataclass

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # LLM providers (OpenAI-compatible chat completions)
    grok_api_key: str = ""
    grok_base_url: str = "https://api.x.ai/v1"
    grok_model: str = "grok-4-latest"
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_model: str = "openai/gpt-4.1"
    default_model: str = "grok-4-latest"  # grok-4-latest | gpt-4.1
    llm_temperature: float = 0.2
    llm_max_tokens: int = 4096

    # Search
    perplexity_api_key: str = ""
    perplexity_model: str = "sonar-pro"
    tavily_api_key: str = ""
    search_fallback_to_tavily: bool = True

    # Scrape / discovery (Firecrawl)
    firecrawl_api_key: str = ""
    firecrawl_base_url: str = "https://api.firecrawl.dev"

    # Budget
    base_cost: int = 8
    cost_per_search: int = 1
    cost_per_scrape: int = 2
    max_credits: int = 25

    # Iteration stop criteria
    max_iterations: int = 5
    max_execution_seconds: float = 240.0
    confidence_threshold: float = 0.8
    coverage_threshold: float = 0.75
    min_content_length: int = 6000
    min_sources: int = 6

    # Fan-out shape
    searches_per_iteration: int = 4
    search_batch_size: int = 3
    max_scrape_per_round: int = 3
    scrape_batch_size: int = 3
    discovery_iterations: int = 2
    discovery_limit: int = 8
    validate_every: int = 2
    validation_soft_threshold: float = 0.6

    # Timeouts and retries
    search_timeout_seconds: float = 60.0
    scrape_timeout_seconds: float = 30.0
    scrape_extended_timeout_seconds: float = 60.0
    discovery_timeout_seconds: float = 30.0
    llm_timeout_seconds: float = 90.0
    provider_max_attempts: int = 2

    # Truncation
    scrape_content_chars: int = 4000
    validator_content_chars: int = 6000
    synthesis_content_chars: int = 45000

    # Supabase (auth, task store, ledger)
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # App
    cors_origins: str = "http://localhost:5173,http://localhost:8080"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@dataclass(frozen=True, slots=True)
class ResearchLimits:
    """Budget and loop constants for a single research task."""

    base_cost: int = 8
    cost_per_search: int = 1
    cost_per_scrape: int = 2
    max_credits: int = 25
    max_iterations: int = 5
    max_execution_seconds: float = 240.0
    confidence_threshold: float = 0.8
    coverage_threshold: float = 0.75
    min_content_length: int = 6000
    min_sources: int = 6
    searches_per_iteration: int = 4
    search_batch_size: int = 3
    max_scrape_per_round: int = 3
    scrape_batch_size: int = 3
    discovery_iterations: int = 2
    discovery_limit: int = 8
    validate_every: int = 2
    validation_soft_threshold: float = 0.6
    scrape_content_chars: int = 4000
    validator_content_chars: int = 6000
    synthesis_content_chars: int = 45000

    @classmethod
    def from_settings(cls, source: Settings) -> "ResearchLimits":
        return cls(
            base_cost=max(int(source.base_cost), 0),
            cost_per_search=max(int(source.cost_per_search), 0),
            cost_per_scrape=max(int(source.cost_per_scrape), 0),
            max_credits=max(int(source.max_credits), int(source.base_cost)),
            max_iterations=max(int(source.max_iterations), 1),
            max_execution_seconds=max(float(source.max_execution_seconds), 1.0),
            confidence_threshold=float(source.confidence_threshold),
            coverage_threshold=float(source.coverage_threshold),
            min_content_length=max(int(source.min_content_length), 0),
            min_sources=max(int(source.min_sources), 0),
            searches_per_iteration=max(int(source.searches_per_iteration), 1),
            search_batch_size=max(int(source.search_batch_size), 1),
            max_scrape_per_round=max(int(source.max_scrape_per_round), 0),
            scrape_batch_size=max(int(source.scrape_batch_size), 1),
            discovery_iterations=max(int(source.discovery_iterations), 0),
            discovery_limit=max(int(source.discovery_limit), 1),
            validate_every=max(int(source.validate_every), 1),
            validation_soft_threshold=float(source.validation_soft_threshold),
            scrape_content_chars=max(int(source.scrape_content_chars), 500),
            validator_content_chars=max(int(source.validator_content_chars), 1000),
            synthesis_content_chars=max(int(source.synthesis_content_chars), 6000),
        )


settings = Settings()
