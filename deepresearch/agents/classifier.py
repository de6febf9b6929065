from __future__ import annotations

import re

from deepresearch.models.research import QueryCategory

# Checked in order; the first match wins.
_RULES: tuple[tuple[QueryCategory, re.Pattern[str]], ...] = (
    (
        QueryCategory.SUPPLIER,
        re.compile(r"supplier|manufacturer|vendor|factory|sourcing|moq|producer|wholesale"),
    ),
    (
        QueryCategory.TREND,
        re.compile(r"trend|fashion week|runway|seasonal|forecast|style|color palette"),
    ),
    (
        QueryCategory.MARKET,
        re.compile(r"market|competition|pricing|revenue|growth|industry analysis|market size"),
    ),
    (
        QueryCategory.SUSTAINABILITY,
        re.compile(r"sustainable|eco|organic|recycled|certification|gots|oeko-tex|ethical|carbon"),
    ),
)


def classify_query(query: str) -> QueryCategory:
    """Map raw query text to a research category."""
    lowered = (query or "").lower()
    for category, pattern in _RULES:
        if pattern.search(lowered):
            return category
    return QueryCategory.GENERAL
