import pytest

from clickgate.auth.patterns import (
    MAX_PATTERN_LENGTH,
    SPECIFICITY_LITERAL,
    SPECIFICITY_PARTIAL,
    SPECIFICITY_WILDCARD,
    matches_pattern,
    pattern_specificity,
    validate_pattern,
)


@pytest.mark.parametrize(
    ("value", "pattern", "expected"),
    [
        ("sales", "*", True),
        ("sales", "sales", True),
        ("sales", "Sales", False),
        ("sales_2024", "sales_*", True),
        ("sales", "sales*", True),
        ("presales", "sales*", False),
        ("my_sales_db", "*sales*", True),
        ("sales", "sale", False),
        ("sales", "ales", False),
        ("a.b", "a.b", True),
        ("axb", "a.b", False),
        ("a?", "a?", True),
        ("ab", "a?", False),
        ("t1", "t[0-9]", False),
    ],
)
def test_matches_pattern(value: str, pattern: str, expected: bool) -> None:
    assert matches_pattern(value, pattern) is expected


def test_pattern_specificity_ranks_wildcard_partial_literal() -> None:
    assert pattern_specificity("*") == SPECIFICITY_WILDCARD
    assert pattern_specificity("sales_*") == SPECIFICITY_PARTIAL
    assert pattern_specificity("orders") == SPECIFICITY_LITERAL
    assert SPECIFICITY_WILDCARD < SPECIFICITY_PARTIAL < SPECIFICITY_LITERAL


def test_validate_pattern_returns_pattern_unchanged() -> None:
    assert validate_pattern("Sales_*") == "Sales_*"


@pytest.mark.parametrize(
    "pattern",
    ["", " sales", "sales ", "x" * (MAX_PATTERN_LENGTH + 1), "/^sales$/"],
)
def test_validate_pattern_rejects_invalid(pattern: str) -> None:
    with pytest.raises(ValueError):
        validate_pattern(pattern, field="database_pattern")


def test_validate_pattern_accepts_max_length() -> None:
    pattern = "x" * MAX_PATTERN_LENGTH
    assert validate_pattern(pattern) == pattern
