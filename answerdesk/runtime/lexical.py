# answerdesk/runtime/lexical.py
"""
Lexical scorer: crude bag-of-words overlap.

Used where vector similarity is missing (reviews stored without embeddings)
and for keyword rescue. No stemming, stop words or IDF weighting.
"""
from __future__ import annotations

import re
from typing import Iterable, List

_NON_ALNUM = re.compile(r"[\W_]+")
_SPACES = re.compile(r"\s+")


def normalize_text(s: str) -> str:
    """Lowercase, non-alphanumerics -> space, collapse whitespace, trim."""
    s = _NON_ALNUM.sub(" ", (s or "").lower())
    return _SPACES.sub(" ", s).strip()


def query_tokens(query: str) -> List[str]:
    # duplicates kept on purpose: a repeated word raises the score ceiling
    norm = normalize_text(query)
    return norm.split(" ") if norm else []


def lexical_score(text: str, query: str) -> int:
    """Count query tokens that occur as substrings of the normalized text."""
    t = normalize_text(text)
    if not t:
        return 0
    return sum(1 for tok in query_tokens(query) if tok in t)


def keyword_hits(text: str, keywords: Iterable[str]) -> int:
    """How many keywords (normalized) occur in the normalized text."""
    t = normalize_text(text)
    if not t:
        return 0
    hits = 0
    for kw in keywords:
        k = normalize_text(kw)
        if k and k in t:
            hits += 1
    return hits


def mentions_any(text: str, keywords: Iterable[str]) -> bool:
    return keyword_hits(text, keywords) > 0
