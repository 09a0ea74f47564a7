"""Fuzzy text helpers used by query synthesis, relevance and NAP scoring.

Everything here is pure: no I/O, no configuration lookups.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable, List, Optional, Set

from rapidfuzz.distance import DamerauLevenshtein

MAX_NAME_VARIANTS = 4

_NOT_SIMPLE = re.compile(r"[^a-z0-9\s&-]")
_NOT_TOKEN = re.compile(r"[^a-z0-9\s-]")
_NOT_ALNUM = re.compile(r"[^a-z0-9\s]")
_MULTI_SPACE = re.compile(r"\s+")
_AMPERSAND = re.compile(r"\s*&\s*")
_APOSTROPHES = re.compile(r"['’]")


def strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize(value: Optional[str]) -> str:
    """Lowercase, strip diacritics, drop punctuation except ``&`` and ``-``."""
    if not value:
        return ""
    text = strip_diacritics(value.lower())
    text = _NOT_SIMPLE.sub(" ", text)
    return _MULTI_SPACE.sub(" ", text).strip()


def strip_apostrophes(value: str) -> str:
    return _APOSTROPHES.sub("", value)


def name_variants(name: Optional[str]) -> List[str]:
    """
    Return an ordered, de-duplicated list of search-friendly name forms.

    Example:
      "Bob's Plumbing & Gas" -> ["bob s plumbing & gas",
                                 "bob s plumbing and gas",
                                 "bobsplumbing&gas"]
    """
    base = normalize(name)
    if not base:
        return []
    candidates = [
        base,
        _AMPERSAND.sub(" and ", base),
        base.replace("-", " "),
        _MULTI_SPACE.sub("", base),
    ]
    variants: List[str] = []
    for candidate in candidates:
        candidate = _MULTI_SPACE.sub(" ", candidate).strip()
        if candidate and candidate not in variants:
            variants.append(candidate)
    return variants[:MAX_NAME_VARIANTS]


def token_set(value: Optional[str]) -> Set[str]:
    if not value:
        return set()
    return {token for token in _NOT_ALNUM.sub(" ", value.lower()).split() if token}


def tokenise(value: Optional[str]) -> List[str]:
    """Tokenizer used for relevance scoring: keeps hyphens, drops 1-char tokens."""
    if not value:
        return []
    return [token for token in _NOT_TOKEN.sub(" ", value.lower()).split() if len(token) > 1]


def overlap_ratio(a: Set[str], b: Set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / min(len(a), len(b))


def bounded_edit_distance(a: str, b: str, max_dist: int = 2) -> int:
    """Damerau-Levenshtein distance, or ``max_dist + 1`` once it is known to be larger."""
    if a == b:
        return 0
    if abs(len(a) - len(b)) > max_dist:
        return max_dist + 1
    return DamerauLevenshtein.distance(a, b, score_cutoff=max_dist)


def fuzzy_token_bonus(brand_tokens: Iterable[str], tokens: Iterable[str], max_bonus: int) -> int:
    """Small bonus for brand tokens that only appear with a typo or two."""
    pool = [token for token in dict.fromkeys(tokens) if len(token) > 2]
    present = set(pool)
    bonus = 0
    for brand in brand_tokens:
        if brand in present or len(brand) <= 2:
            continue
        best = 3
        for token in pool:
            best = min(best, bounded_edit_distance(brand, token, 2))
            if best == 0:
                break
        if len(brand) >= 4 and best == 1:
            bonus += 2
        elif len(brand) >= 6 and best == 2:
            bonus += 1
    return min(bonus, max_bonus)
