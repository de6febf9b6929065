"""Heuristic confidence/coverage scoring.

The weights are a tunable policy. Scores reported to callers never decrease
between rounds; only an authoritative validator result may lower them.
"""
from __future__ import annotations

from dataclasses import dataclass

from deepresearch.config import ResearchLimits
from deepresearch.models.research import MetricsSnapshot

TARGET_DOMAINS = 5
TARGET_SCRAPES = 3

CONFIDENCE_WEIGHTS = {"content": 0.35, "sources": 0.25, "domains": 0.15, "scrapes": 0.25}
COVERAGE_WEIGHTS = {"content": 0.20, "sources": 0.30, "domains": 0.35, "scrapes": 0.15}


def _ratio(value: int, target: int) -> float:
    if target <= 0:
        return 1.0
    return min(value / target, 1.0)


def heuristic_scores(
    *,
    content_length: int,
    source_count: int,
    unique_domains: int,
    scrape_count: int,
    limits: ResearchLimits,
) -> tuple[float, float]:
    parts = {
        "content": _ratio(content_length, limits.min_content_length),
        "sources": _ratio(source_count, limits.min_sources),
        "domains": _ratio(unique_domains, TARGET_DOMAINS),
        "scrapes": _ratio(scrape_count, TARGET_SCRAPES),
    }
    confidence = sum(CONFIDENCE_WEIGHTS[k] * v for k, v in parts.items())
    coverage = sum(COVERAGE_WEIGHTS[k] * v for k, v in parts.items())
    return round(min(confidence, 1.0), 4), round(min(coverage, 1.0), 4)


def _clamp(value: float) -> float:
    return max(0.0, min(float(value), 1.0))


@dataclass
class ScoreKeeper:
    """Running confidence/coverage for one task."""

    limits: ResearchLimits
    confidence: float = 0.0
    coverage: float = 0.0
    validated: bool = False
    _baseline_confidence: float = 0.0
    _baseline_coverage: float = 0.0

    def update(
        self,
        *,
        content_length: int,
        source_count: int,
        unique_domains: int,
        scrape_count: int,
    ) -> MetricsSnapshot:
        h_conf, h_cov = heuristic_scores(
            content_length=content_length,
            source_count=source_count,
            unique_domains=unique_domains,
            scrape_count=scrape_count,
            limits=self.limits,
        )
        if self.validated:
            # After validation, only heuristic gains since that call move the score.
            conf = self.confidence + max(h_conf - self._baseline_confidence, 0.0)
            cov = self.coverage + max(h_cov - self._baseline_coverage, 0.0)
            self._baseline_confidence = max(self._baseline_confidence, h_conf)
            self._baseline_coverage = max(self._baseline_coverage, h_cov)
        else:
            conf, cov = h_conf, h_cov

        self.confidence = max(self.confidence, _clamp(conf))
        self.coverage = max(self.coverage, _clamp(cov))
        return MetricsSnapshot(
            content_length=content_length,
            source_count=source_count,
            unique_domains=unique_domains,
            scrape_count=scrape_count,
            confidence=self.confidence,
            coverage=self.coverage,
        )

    def apply_validation(
        self,
        confidence: float,
        coverage: float,
        *,
        content_length: int,
        source_count: int,
        unique_domains: int,
        scrape_count: int,
    ) -> None:
        """Replace the running scores with an authoritative validator result."""
        self.confidence = _clamp(confidence)
        self.coverage = _clamp(coverage)
        self.validated = True
        self._baseline_confidence, self._baseline_coverage = heuristic_scores(
            content_length=content_length,
            source_count=source_count,
            unique_domains=unique_domains,
            scrape_count=scrape_count,
            limits=self.limits,
        )

    def thresholds_met(self, *, content_length: int, source_count: int) -> bool:
        return (
            self.confidence >= self.limits.confidence_threshold
            and self.coverage >= self.limits.coverage_threshold
            and content_length >= self.limits.min_content_length
            and source_count >= self.limits.min_sources
        )
