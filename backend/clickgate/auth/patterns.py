"""Glob matching for data-access rule patterns.

Only ``*`` is special: it matches any run of characters, including none.
Every other character (``?``, ``[``, ``.``, ``/`` ...) is literal. Patterns
match the whole value and are case-sensitive.
"""
import re
from functools import lru_cache

WILDCARD = "*"
MAX_PATTERN_LENGTH = 255

SPECIFICITY_WILDCARD = 0
SPECIFICITY_PARTIAL = 1
SPECIFICITY_LITERAL = 2


@lru_cache(maxsize=1024)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(".*".join(re.escape(part) for part in pattern.split(WILDCARD)))


def matches_pattern(value: str, pattern: str) -> bool:
    if pattern == WILDCARD:
        return True
    if WILDCARD not in pattern:
        return value == pattern
    return _compile(pattern).fullmatch(value) is not None


def pattern_specificity(pattern: str) -> int:
    """Rank a pattern: bare ``*`` < partial glob (``sales_*``) < literal."""
    if pattern == WILDCARD:
        return SPECIFICITY_WILDCARD
    if WILDCARD in pattern:
        return SPECIFICITY_PARTIAL
    return SPECIFICITY_LITERAL


def validate_pattern(pattern: str, *, field: str = "pattern") -> str:
    """Return the pattern unchanged or raise ValueError.

    Patterns are never trimmed or case-folded; a value that would need
    coercion is rejected instead.
    """
    if not isinstance(pattern, str) or not pattern:
        raise ValueError(f"{field} must be a non-empty string")
    if len(pattern) > MAX_PATTERN_LENGTH:
        raise ValueError(f"{field} must be at most {MAX_PATTERN_LENGTH} characters")
    if pattern != pattern.strip():
        raise ValueError(f"{field} must not have leading or trailing whitespace")
    if len(pattern) > 1 and pattern.startswith("/") and pattern.endswith("/"):
        raise ValueError(f"{field} regular expressions are not supported")
    return pattern
