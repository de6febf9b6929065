"""Error taxonomy that may terminate a research task.

Only these errors cross the orchestrator boundary. Failures inside a single
provider call are converted into "contributed nothing" by the callers.
"""
from __future__ import annotations

from typing import Any


class ResearchError(Exception):
    """Base error carrying a human-readable reason for the `failed` event."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def to_event_payload(self) -> dict[str, Any]:
        return {"error": self.reason}


class ValidationError(ResearchError):
    """Bad, empty or injection-flagged input."""


class AuthError(ResearchError):
    """No resolvable caller identity."""


class BudgetError(ResearchError):
    """Caller balance below the base cost of a research task."""

    def __init__(self, balance: int, required: int, reason: str | None = None):
        super().__init__(
            reason
            or "You're out of credits for this research. Add credits to continue searching and researching."
        )
        self.balance = balance
        self.required = required

    @property
    def shortfall(self) -> int:
        return max(self.required - self.balance, 0)

    def to_event_payload(self) -> dict[str, Any]:
        return {
            "error": self.reason,
            "insufficientCredits": True,
            "currentBalance": self.balance,
            "requiredCredits": self.required,
            "shortfall": self.shortfall,
        }


class ProviderError(ResearchError):
    """A search, scrape, discovery or LLM call failed or timed out."""

    def __init__(self, provider: str, reason: str):
        super().__init__(f"{provider}: {reason}")
        self.provider = provider


class ConfigurationError(ResearchError):
    """No provider is configured for a required capability."""


class SynthesisError(ResearchError):
    """Final generation failed even after the non-streamed fallback."""

    def __init__(self, reason: str, partial_findings: str = ""):
        super().__init__(reason)
        self.partial_findings = partial_findings

    def to_event_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.reason}
        if self.partial_findings:
            payload["partialFindings"] = self.partial_findings
        return payload
