# answerdesk/runtime/ranking.py
"""
Ranking & boost engine.

Two pipelines with the same shape, ``rank_*(candidates, query, config)``:

  FAQ     similarity >= threshold, + additive boosts, top-N;
          keyword rescue only when nothing clears the threshold
  Review  parse -> lexical overlap + positional bonus, top-N

Both are pure: no I/O, no clock, no randomness. Equal scores keep the vector
store's order (Python's sort is stable), so a fixed DB state and embedding
always produce the same ranking.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from answerdesk.runtime.candidates import Bucket, Candidate
from answerdesk.runtime.config import RankingConfig
from answerdesk.runtime.lexical import keyword_hits, lexical_score, mentions_any, normalize_text
from answerdesk.runtime.reviews import ParsedReview, parse_review


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate plus its ranking score. Rank is the list position."""

    candidate: Candidate
    score: float
    via: str  # "threshold" | "rescue" | "lexical" | "blended"
    review: Optional[ParsedReview] = None
    lexical: int = 0

    def faq_result(self) -> Dict[str, Any]:
        return {"content": self.candidate.content, "similarity": self.candidate.similarity}

    def review_result(self) -> Dict[str, Any]:
        review = self.review or parse_review(self.candidate.content, self.candidate.url)
        return review.to_result()


# ── Typed outcomes ──────────────────────────────────────────────────


@dataclass(frozen=True)
class FaqHit:
    results: List[ScoredCandidate]
    rescued: bool = False


@dataclass(frozen=True)
class FaqMiss:
    reason: str
    considered: int = 0


@dataclass(frozen=True)
class ReviewHit:
    results: List[ScoredCandidate]


@dataclass(frozen=True)
class ReviewMiss:
    reason: str
    considered: int = 0


FaqOutcome = Union[FaqHit, FaqMiss]
ReviewOutcome = Union[ReviewHit, ReviewMiss]


# ── FAQ pipeline ────────────────────────────────────────────────────


def _of_bucket(candidates: Sequence[Candidate], bucket: Bucket) -> List[Candidate]:
    return [c for c in (candidates or []) if isinstance(c, Candidate) and c.bucket == bucket]


def query_has_intent(query: str, config: RankingConfig) -> bool:
    """True when the normalized query contains any rescue/intent keyword."""
    return mentions_any(query, config.rescue_keywords)


def _faq_score(c: Candidate, intent: bool, config: RankingConfig) -> float:
    score = c.similarity + config.boost_for(Bucket.FAQ.value)
    if intent and config.intent_boost and mentions_any(c.content, config.rescue_keywords):
        score += config.intent_boost
    return score


def _rescue(faqs: List[Candidate], query: str, config: RankingConfig) -> Optional[ScoredCandidate]:
    if not query_has_intent(query, config):
        return None
    best: Optional[ScoredCandidate] = None
    for c in faqs:
        hits = keyword_hits(c.content, config.rescue_keywords)
        # strict ">" keeps the earliest candidate on ties
        if hits > 0 and (best is None or hits > best.score):
            best = ScoredCandidate(candidate=c, score=float(hits), via="rescue", lexical=hits)
    return best


def search_faq(candidates: Sequence[Candidate], query: str, config: RankingConfig) -> FaqOutcome:
    faqs = _of_bucket(candidates, Bucket.FAQ)
    if not faqs:
        return FaqMiss(reason="no faq candidates", considered=0)

    intent = query_has_intent(query, config)
    primary = [
        ScoredCandidate(candidate=c, score=_faq_score(c, intent, config), via="threshold")
        for c in faqs
        if c.similarity >= config.faq_min_similarity
    ]
    if primary:
        primary.sort(key=lambda s: s.score, reverse=True)
        return FaqHit(results=primary[: config.max_faq_return], rescued=False)

    rescued = _rescue(faqs, query, config)
    if rescued is not None:
        return FaqHit(results=[rescued], rescued=True)

    return FaqMiss(
        reason=f"no faq candidate >= {config.faq_min_similarity} and no keyword rescue",
        considered=len(faqs),
    )


def rank_faq(candidates: Sequence[Candidate], query: str, config: RankingConfig) -> List[ScoredCandidate]:
    outcome = search_faq(candidates, query, config)
    return outcome.results if isinstance(outcome, FaqHit) else []


# ── Review pipeline ─────────────────────────────────────────────────


def position_bonus(ordinal: int, total: int, config: RankingConfig) -> float:
    """Strictly decreasing in ``ordinal``, always in (0, review_position_bonus]."""
    if total <= 0:
        return 0.0
    return config.review_position_bonus * (total - ordinal) / total


def search_reviews(candidates: Sequence[Candidate], query: str, config: RankingConfig) -> ReviewOutcome:
    reviews = _of_bucket(candidates, Bucket.REVIEW)
    if not reviews:
        return ReviewMiss(reason="no review candidates", considered=0)
    if not normalize_text(query):
        return ReviewMiss(reason="query has no searchable words", considered=len(reviews))

    scored: List[ScoredCandidate] = []
    n = len(reviews)
    for i, c in enumerate(reviews):
        parsed = parse_review(c.content, c.url)
        lex = lexical_score(parsed.text, query)
        if lex <= 0:
            continue
        total = lex + position_bonus(i, n, config) + config.boost_for(Bucket.REVIEW.value)
        scored.append(ScoredCandidate(candidate=c, score=total, via="lexical", review=parsed, lexical=lex))

    if not scored:
        return ReviewMiss(reason="no review shares a word with the query", considered=n)

    scored.sort(key=lambda s: s.score, reverse=True)
    return ReviewHit(results=scored[: config.max_review_return])


def rank_reviews(candidates: Sequence[Candidate], query: str, config: RankingConfig) -> List[ScoredCandidate]:
    outcome = search_reviews(candidates, query, config)
    return outcome.results if isinstance(outcome, ReviewHit) else []


# ── Blended single-answer ranking ───────────────────────────────────


def rank_blended(candidates: Sequence[Candidate], config: RankingConfig, limit: Optional[int] = None) -> List[ScoredCandidate]:
    """Mixed faq/review pool ranked by similarity + bucket boost (FAQ wins ties)."""
    scored = [
        ScoredCandidate(candidate=c, score=c.similarity + config.boost_for(c.bucket.value), via="blended")
        for c in (candidates or [])
        if isinstance(c, Candidate) and c.bucket in (Bucket.FAQ, Bucket.REVIEW)
    ]
    scored.sort(key=lambda s: s.score, reverse=True)
    return scored[:limit] if limit is not None else scored


@dataclass(frozen=True)
class BucketCounts:
    faq: int = 0
    review: int = 0
    unknown: int = 0
    unknown_previews: List[Dict[str, Any]] = field(default_factory=list)


def count_buckets(candidates: Sequence[Candidate], preview_limit: int = 5) -> BucketCounts:
    faq = review = unknown = 0
    previews: List[Dict[str, Any]] = []
    for c in candidates or []:
        if c.bucket == Bucket.FAQ:
            faq += 1
        elif c.bucket == Bucket.REVIEW:
            review += 1
        else:
            unknown += 1
            if len(previews) < preview_limit:
                previews.append(
                    {
                        "document_id": c.document_id,
                        "url": c.url,
                        "position": c.position,
                        "reason": c.malformed_reason or "unrecognised bucket tag",
                        "preview": c.preview(),
                    }
                )
    return BucketCounts(faq=faq, review=review, unknown=unknown, unknown_previews=previews)
