"""Part number normalization.

The single normalization function used by every matching stage, the rule
engine and the interchange loader.

Examples:
    " ab-012.34 " → "AB01234"
    "00123-A"     → "123A"
    None          → ""
"""

import re
from typing import Optional

_NON_ALNUM = re.compile(r"[^A-Z0-9]")
_WORD = re.compile(r"[a-z0-9]+")

DESCRIPTION_STOPWORDS = frozenset({
    "with", "without", "from", "into", "that", "this", "each", "pack", "pair",
    "for", "and", "the", "part", "parts", "item", "items", "auto", "automotive",
})


def normalize(value: Optional[str]) -> str:
    """Uppercase, strip every non-alphanumeric character, strip leading zeros."""
    if not value:
        return ""

    norm = _NON_ALNUM.sub("", str(value).upper())
    return norm.lstrip("0")


def normalize_line_code(value: Optional[str]) -> str:
    """Line codes use the same canonical form ("007" and "7" agree)."""
    return normalize(value)


def is_complex_part(norm: str) -> bool:
    """Long, digit-bearing part numbers are distinctive enough to ignore line code."""
    return len(norm) > 5 and any(ch.isdigit() for ch in norm)


def description_words(text: Optional[str], min_length: int = 4) -> set[str]:
    """Lowercase keyword set of a description, stopwords removed."""
    if not text:
        return set()

    return {
        word for word in _WORD.findall(text.lower())
        if len(word) >= min_length and word not in DESCRIPTION_STOPWORDS
    }


def part_key(value: Optional[str]) -> str:
    """Lowercase alphanumeric form used for substring containment checks."""
    if not value:
        return ""
    return re.sub(r"[^a-z0-9]", "", str(value).lower())
