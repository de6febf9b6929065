from __future__ import annotations

import re

from deepresearch.errors import ValidationError
from deepresearch.models.schemas import ResearchRequest
from deepresearch.services import logger as log_service

MAX_QUERY_LENGTH = 5000

SUPPORTED_DOMAINS = (
    "all",
    "fashion",
    "beauty",
    "skincare",
    "sustainability",
    "fashion-tech",
    "catwalks",
    "culture",
    "textile",
    "lifestyle",
)

SQL_INJECTION_PATTERNS = [
    re.compile(r"\b(DROP|TRUNCATE|ALTER|CREATE)\s+(TABLE|DATABASE|SCHEMA)\b", re.IGNORECASE),
    re.compile(r"\bSELECT\s+\*|\bSELECT\b.+\bFROM\b.+\bWHERE\b", re.IGNORECASE),
    re.compile(r"\b(INSERT\s+INTO|DELETE\s+FROM)\b|\bUPDATE\s+\w+\s+SET\b", re.IGNORECASE),
    re.compile(r"\b(EXEC|EXECUTE)\s*\(|\bEXEC\s+\w+", re.IGNORECASE),
    re.compile(r"(--|/\*|\*/)"),
    re.compile(r";\s*(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|TRUNCATE)\b", re.IGNORECASE),
    re.compile(r"['\"]\s*;"),
    re.compile(r"\bOR\b\s*['\"]?\d+['\"]?\s*=\s*['\"]?\d+['\"]?", re.IGNORECASE),
    re.compile(r"\bAND\b\s+\d+\s*=\s*\d+", re.IGNORECASE),
    re.compile(r"\b(SLEEP|BENCHMARK|WAITFOR|DELAY)\s*\(", re.IGNORECASE),
    re.compile(r"\b(CHAR|CONCAT|SUBSTRING)\s*\(", re.IGNORECASE),
    re.compile(r"\bINTO\s+(OUTFILE|DUMPFILE)\b", re.IGNORECASE),
    re.compile(r"\bUNION\s+(ALL\s+)?SELECT\b", re.IGNORECASE),
]

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_UUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)


def sanitize_query(text: str, max_length: int = MAX_QUERY_LENGTH) -> str:
    if not isinstance(text, str):
        return ""
    sanitized = text[:max_length]
    sanitized = _CONTROL_CHARS.sub("", sanitized)
    return sanitized.strip()


def contains_injection(text: str) -> bool:
    if not text:
        return False
    normalized = " ".join(text.split())
    return any(pattern.search(normalized) for pattern in SQL_INJECTION_PATTERNS)


def is_valid_uuid(value: str) -> bool:
    return isinstance(value, str) and bool(_UUID.match(value))


def validate_request(request: ResearchRequest, *, user_id: str | None = None) -> ResearchRequest:
    """Return a sanitized copy of `request` or raise ValidationError."""
    if not isinstance(request.query, str):
        log_service.log_security_event("validation_error", field="query", user_id=user_id, reason="invalid_type")
        raise ValidationError("Invalid query")

    query = sanitize_query(request.query)
    if not query:
        raise ValidationError("Query cannot be empty")

    if contains_injection(query):
        log_service.log_security_event(
            "injection_attempt",
            type="sql",
            user_id=user_id,
            query_length=len(query),
        )
        raise ValidationError("Invalid characters detected in query")

    conversation_id = request.conversation_id
    if conversation_id and not is_valid_uuid(conversation_id):
        log_service.log_security_event(
            "validation_error", field="conversationId", user_id=user_id, reason="invalid_uuid"
        )
        raise ValidationError("Invalid conversation ID format")

    domain = (request.domain or "all").strip().lower()
    if domain not in SUPPORTED_DOMAINS:
        domain = "all"

    return ResearchRequest(
        query=query,
        conversation_id=conversation_id or None,
        model=request.model,
        domain=domain,
    )
