import pytest

from deepresearch.errors import ValidationError
from deepresearch.models.schemas import ResearchRequest
from deepresearch.services.input_validation import (
    MAX_QUERY_LENGTH,
    contains_injection,
    sanitize_query,
    validate_request,
)


def test_sanitize_strips_control_characters_and_truncates():
    assert sanitize_query("  denim\x00 mills\x07 ") == "denim mills"
    assert len(sanitize_query("a" * (MAX_QUERY_LENGTH + 50))) == MAX_QUERY_LENGTH


@pytest.mark.parametrize(
    "query",
    [
        "denim'; DROP TABLE users",
        "x' OR 1=1",
        "UNION SELECT password FROM users",
        "cotton /* hidden */",
        "SLEEP(5)",
    ],
)
def test_injection_patterns_are_flagged(query):
    assert contains_injection(query)


@pytest.mark.parametrize(
    "query",
    [
        "Sustainable denim suppliers in Portugal with GOTS certification",
        "What are the top trends for SS25? Colours & fabrics",
        "Select the best linen mills in Italy",
        "Cotton-linen blends for summer shirts",
    ],
)
def test_ordinary_queries_pass(query):
    assert not contains_injection(query)


def test_validate_request_normalizes_domain():
    request = validate_request(ResearchRequest(query=" denim mills ", domain="Unknown"), user_id="u1")
    assert request.query == "denim mills"
    assert request.domain == "all"

    request = validate_request(ResearchRequest(query="denim", domain="Textile"))
    assert request.domain == "textile"


def test_validate_request_rejects_bad_conversation_id():
    with pytest.raises(ValidationError, match="Invalid conversation ID format"):
        validate_request(ResearchRequest(query="denim", conversationId="123"))


def test_validate_request_accepts_uuid_conversation_id():
    conversation_id = "2f1c7a0e-5b1d-4c8e-9f6a-0d3b2a1c4e5f"
    request = validate_request(ResearchRequest(query="denim", conversationId=conversation_id))
    assert request.conversation_id == conversation_id


def test_validate_request_rejects_empty_query():
    with pytest.raises(ValidationError, match="Query cannot be empty"):
        validate_request(ResearchRequest(query="\x00\x01  "))
