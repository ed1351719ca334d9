# answerdesk/runtime/reviews.py
"""
Review text parser.

Review passages come out of ingestion as loosely structured text, e.g.

    Reviewer: Jane Doe
    Rating: 5
    Date: 2024-01-01
    Review: Great fit

or as scraped fragments such as ``displayName: 'Jane Doe', rating: 4``.
Each field is extracted independently; a missing field never blocks the
others and the body always falls back to the whole text.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

_DISPLAY_NAME = re.compile(r"""display_?name["']?\s*[:=]\s*(["']?)(?P<v>[^"'\n,}]+)\1""", re.IGNORECASE)
_REVIEWER_LINE = re.compile(r"^\s*reviewer\s*:(?P<v>.*)$", re.IGNORECASE | re.MULTILINE)
_RATING = re.compile(
    r"""\brating["']?\s*[:=]\s*["']?(?P<kv>\d+(?:\.\d+)?)|(?P<frac>\d+(?:\.\d+)?)\s*/\s*5\b""",
    re.IGNORECASE,
)
_ISO_DATE = re.compile(r"(?<!\d)(\d{4}-\d{2}-\d{2})(?!\d)")
_DATE_LINE = re.compile(r"^\s*date\s*:(?P<v>.*)$", re.IGNORECASE | re.MULTILINE)
_BODY_LINE = re.compile(r"^\s*(?:review|comment)\s*:(?P<v>.*)$", re.IGNORECASE | re.MULTILINE)

_QUOTES = "\"'`‘’“”"

Number = Union[int, float]


@dataclass(frozen=True)
class ParsedReview:
    reviewer: Optional[str]
    rating: Optional[Number]
    date: Optional[str]
    text: str
    source_url: Optional[str] = None

    def to_result(self) -> Dict[str, Any]:
        return {
            "reviewer": self.reviewer,
            "rating": self.rating,
            "date": self.date,
            "text": self.text,
        }


def _clean(value: str) -> Optional[str]:
    v = value.strip().strip(_QUOTES).strip()
    return v or None


def _reviewer(raw: str) -> Optional[str]:
    m = _DISPLAY_NAME.search(raw)
    if m:
        name = _clean(m.group("v"))
        if name:
            return name
    m = _REVIEWER_LINE.search(raw)
    return _clean(m.group("v")) if m else None


def _rating(raw: str) -> Optional[Number]:
    m = _RATING.search(raw)
    if not m:
        return None
    val = float(m.group("kv") or m.group("frac"))
    if not 0.0 <= val <= 5.0:
        return None
    return int(val) if val.is_integer() else val


def _date(raw: str) -> Optional[str]:
    m = _ISO_DATE.search(raw)
    if m:
        return m.group(1)
    m = _DATE_LINE.search(raw)
    return _clean(m.group("v")) if m else None


def _body(raw: str) -> str:
    m = _BODY_LINE.search(raw)
    if m:
        body = _clean(m.group("v"))
        if body:
            return body
    return raw.strip()


def parse_review(raw: Optional[str], source_url: Optional[str] = None) -> ParsedReview:
    """Extract reviewer / rating / date / body. Never raises, never returns text=None."""
    raw = raw if isinstance(raw, str) else ""
    return ParsedReview(
        reviewer=_reviewer(raw),
        rating=_rating(raw),
        date=_date(raw),
        text=_body(raw),
        source_url=source_url,
    )
