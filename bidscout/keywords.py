"""Whole-word, case-insensitive keyword matching."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, Pattern, Set

# A boundary is any character that is not a letter or digit, or the string
# edge. Underscore and hyphen are both boundaries, unlike the regex ``\b``.
_WORD_CHAR = r"[^\W_]"


@lru_cache(maxsize=512)
def _compile(term: str) -> Pattern[str]:
    return re.compile(
        rf"(?<!{_WORD_CHAR}){re.escape(term)}(?!{_WORD_CHAR})",
        re.IGNORECASE,
    )


def matches(text: str, term: str) -> bool:
    """Return True when ``term`` appears in ``text`` as a whole word."""
    term = (term or "").strip()
    if not text or not term:
        return False
    return _compile(term).search(text) is not None


def find_all(text: str, terms: Iterable[str]) -> Set[str]:
    """Return every term that has at least one whole-word occurrence."""
    if not text:
        return set()
    return {term for term in terms if matches(text, term)}
