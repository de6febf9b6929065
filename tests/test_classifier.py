import pytest

from deepresearch.agents.classifier import classify_query
from deepresearch.models.research import QueryCategory


@pytest.mark.parametrize(
    "query,expected",
    [
        ("Find denim suppliers in Portugal", QueryCategory.SUPPLIER),
        ("Which factory can do low MOQ knitwear?", QueryCategory.SUPPLIER),
        ("Spring runway colour stories", QueryCategory.TREND),
        ("Forecast for quiet luxury in 2026", QueryCategory.TREND),
        ("Resale market size in Europe", QueryCategory.MARKET),
        ("Recycled polyester environmental impact", QueryCategory.SUSTAINABILITY),
        ("History of the denim jacket", QueryCategory.GENERAL),
        ("", QueryCategory.GENERAL),
    ],
)
def test_classify_query(query, expected):
    assert classify_query(query) == expected


def test_supplier_wins_over_later_rules():
    # Mentions trend, market and sustainability terms too.
    assert classify_query("Sustainable organic cotton supplier for trend-led market") == QueryCategory.SUPPLIER
