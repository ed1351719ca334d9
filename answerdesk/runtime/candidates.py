# answerdesk/runtime/candidates.py
"""
Candidate normalizer.

Turns a raw vector-store row into a typed Candidate and assigns it to one
bucket of a closed set. Bucket resolution, first non-empty tag wins:

  chunk_meta.source -> chunk_meta.type -> meta.source -> meta.type
  -> review-domain marker in the URL -> "faq"

Unlabelled rows default to "faq": historically every row without bucket
metadata is FAQ content. Unrecognised tag values become "unknown", which
neither ranking path consumes.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from answerdesk.runtime.errors import MalformedCandidate


class Bucket(str, Enum):
    FAQ = "faq"
    REVIEW = "review"
    UNKNOWN = "unknown"


_TAG_TO_BUCKET = {
    "faq": Bucket.FAQ,
    "faqs": Bucket.FAQ,
    "review": Bucket.REVIEW,
    "reviews": Bucket.REVIEW,
    "google-review": Bucket.REVIEW,
    "google_review": Bucket.REVIEW,
}


@dataclass(frozen=True)
class Candidate:
    """A single retrieved passage, before any ranking decision."""

    document_id: Optional[str]
    url: Optional[str]
    bucket: Bucket
    chunk_index: int
    content: str
    similarity: float  # 1 - cosine distance, not clamped
    position: int = 0  # index in the store's returned order
    malformed_reason: Optional[str] = None

    def preview(self, width: int = 120) -> str:
        text = " ".join(self.content.split())
        return text if len(text) <= width else text[: width - 4] + " ..."


def bucket_for_tag(tag: Any) -> Bucket:
    return _TAG_TO_BUCKET.get(str(tag).strip().lower(), Bucket.UNKNOWN)


def tags_for(bucket: Bucket) -> Tuple[str, ...]:
    """Lower-case tag values that classify into ``bucket``."""
    return tuple(tag for tag, b in _TAG_TO_BUCKET.items() if b == bucket)


def _tag(meta: Any, key: str) -> Optional[str]:
    if not isinstance(meta, Mapping):
        return None
    val = meta.get(key)
    if val is None:
        return None
    val = str(val).strip()
    return val or None


def classify_bucket(
    chunk_meta: Any,
    doc_meta: Any,
    url: Optional[str],
    review_domain_markers: Sequence[str] = (),
) -> Bucket:
    for meta, key in (
        (chunk_meta, "source"),
        (chunk_meta, "type"),
        (doc_meta, "source"),
        (doc_meta, "type"),
    ):
        tag = _tag(meta, key)
        if tag is not None:
            return bucket_for_tag(tag)

    u = (url or "").lower()
    if u and any(m.lower() in u for m in review_domain_markers if m):
        return Bucket.REVIEW

    return Bucket.FAQ


def _required_content(row: Mapping[str, Any]) -> str:
    content = row.get("content")
    if not isinstance(content, str):
        raise MalformedCandidate("content missing or not text")
    return content


def _similarity(row: Mapping[str, Any]) -> float:
    raw = row.get("similarity")
    if raw is None:
        # metadata-filtered scans carry no similarity
        return 0.0
    try:
        sim = float(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedCandidate(f"similarity not numeric: {raw!r}") from exc
    if math.isnan(sim):
        raise MalformedCandidate("similarity is NaN")
    return sim


def _chunk_index(row: Mapping[str, Any]) -> int:
    try:
        return int(row.get("chunk_index") or 0)
    except (TypeError, ValueError):
        return 0


def normalize(
    row: Any,
    position: int = 0,
    review_domain_markers: Sequence[str] = (),
) -> Candidate:
    """Map a raw row to a Candidate. Never raises; bad rows become UNKNOWN."""
    if not isinstance(row, Mapping):
        return Candidate(
            document_id=None,
            url=None,
            bucket=Bucket.UNKNOWN,
            chunk_index=0,
            content="",
            similarity=0.0,
            position=position,
            malformed_reason=f"row is {type(row).__name__}, not a mapping",
        )

    doc_id = row.get("document_id")
    url = row.get("url")
    url = str(url) if url is not None else None
    try:
        content = _required_content(row)
        similarity = _similarity(row)
    except MalformedCandidate as exc:
        return Candidate(
            document_id=str(doc_id) if doc_id is not None else None,
            url=url,
            bucket=Bucket.UNKNOWN,
            chunk_index=_chunk_index(row),
            content=row.get("content") if isinstance(row.get("content"), str) else "",
            similarity=0.0,
            position=position,
            malformed_reason=str(exc),
        )

    return Candidate(
        document_id=str(doc_id) if doc_id is not None else None,
        url=url,
        bucket=classify_bucket(row.get("chunk_meta"), row.get("meta"), url, review_domain_markers),
        chunk_index=_chunk_index(row),
        content=content,
        similarity=similarity,
        position=position,
    )


def normalize_rows(rows: Iterable[Any], review_domain_markers: Sequence[str] = ()) -> List[Candidate]:
    """Normalize rows in store order; ``position`` records that order."""
    return [normalize(r, i, review_domain_markers) for i, r in enumerate(rows or [])]
