# answerdesk/runtime/answer_fsm.py
"""
Answer selection FSM: FAQ first, reviews as fallback.

States:
  START         -> FAQ_SEARCH, or REVIEWS_ONLY when the caller asked for reviews
  FAQ_SEARCH    -> FAQ_HIT | FAQ_MISS
  FAQ_HIT       -> DONE   (source=faq, canShowReviews=true)
  FAQ_MISS      -> REVIEW_SEARCH
  REVIEWS_ONLY  -> REVIEW_SEARCH (FAQ_SEARCH skipped)
  REVIEW_SEARCH -> REVIEW_HIT | REVIEW_MISS
  REVIEW_HIT    -> DONE   (source=google-review)
  REVIEW_MISS   -> DONE   (source=none, "not found" message)

FAQ content always wins over review content when both qualify. A run keeps
its state in local variables only; one AnswerSelector can serve concurrent
requests.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from answerdesk.runtime.candidates import Candidate, normalize
from answerdesk.runtime.config import RankingConfig
from answerdesk.runtime.errors import InvalidInput
from answerdesk.runtime.ranking import (
    FaqHit,
    FaqOutcome,
    ReviewHit,
    ReviewOutcome,
    count_buckets,
    search_faq,
    search_reviews,
)

SOURCE_FAQ = "faq"
SOURCE_REVIEW = "google-review"
SOURCE_NONE = "none"

ReviewLoader = Callable[[], Iterable[Any]]


class AnswerState(str, Enum):
    START = "start"
    FAQ_SEARCH = "faq_search"
    FAQ_HIT = "faq_hit"
    FAQ_MISS = "faq_miss"
    REVIEWS_ONLY = "reviews_only"
    REVIEW_SEARCH = "review_search"
    REVIEW_HIT = "review_hit"
    REVIEW_MISS = "review_miss"
    DONE = "done"


@dataclass(frozen=True)
class SearchQuery:
    """A validated query. Build through ``SearchQuery.build``."""

    text: str
    top_k: int
    want_reviews_only: bool = False
    debug: bool = False

    @classmethod
    def build(
        cls,
        text: Any,
        config: RankingConfig,
        top_k: Any = None,
        want_reviews_only: bool = False,
        debug: bool = False,
    ) -> "SearchQuery":
        t = ("" if text is None else str(text)).strip()
        if not t:
            raise InvalidInput("Missing 'query'")
        k = config.clamp_top_k(config.default_top_k if top_k is None else top_k)
        return cls(text=t, top_k=k, want_reviews_only=bool(want_reviews_only), debug=bool(debug))


@dataclass
class AnswerResult:
    """Outcome of one selection run."""

    state: AnswerState
    source: str
    results: List[Dict[str, Any]] = field(default_factory=list)
    can_show_reviews: Optional[bool] = None
    message: Optional[str] = None
    trail: List[str] = field(default_factory=list)
    faq_outcome: Optional[FaqOutcome] = None
    review_outcome: Optional[ReviewOutcome] = None
    debug: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self, include_debug: bool = False, review_link: Optional[str] = None) -> Dict[str, Any]:
        out: Dict[str, Any] = {"source": self.source, "results": self.results}
        if self.can_show_reviews is not None:
            out["canShowReviews"] = self.can_show_reviews
        if self.message:
            out["message"] = self.message
        if review_link:
            out["reviewLink"] = review_link
        if include_debug:
            out["debug"] = self.debug
        return out


def as_candidates(items: Optional[Iterable[Any]], config: RankingConfig) -> List[Candidate]:
    """Accept raw rows or already-normalized Candidates; keep store order."""
    out: List[Candidate] = []
    for i, item in enumerate(items or []):
        if isinstance(item, Candidate):
            out.append(item)
        else:
            out.append(normalize(item, i, config.review_domain_markers))
    return out


class AnswerSelector:
    """Runs the FAQ-first / review-fallback policy over fetched candidates."""

    def __init__(self, config: Optional[RankingConfig] = None) -> None:
        self.config = config or RankingConfig()

    def select(
        self,
        query: SearchQuery,
        candidates: Sequence[Any] = (),
        review_loader: Optional[ReviewLoader] = None,
    ) -> AnswerResult:
        """
        Execute one full run.

        ``candidates`` are the nearest-neighbour rows for the query.
        ``review_loader`` (optional) is only called when the run reaches
        REVIEW_SEARCH; without it, review rows are taken from ``candidates``.
        """
        trail: List[str] = [AnswerState.START.value]
        pool = as_candidates(candidates, self.config)
        debug: Dict[str, Any] = {
            "thresholds": {
                "faqMinSimilarity": self.config.faq_min_similarity,
                "maxFaqReturn": self.config.max_faq_return,
                "maxReviewReturn": self.config.max_review_return,
            },
        }
        self._count_into(debug, "candidates", pool)

        if query.want_reviews_only:
            trail.append(AnswerState.REVIEWS_ONLY.value)
            return self._state_review_search(query, pool, review_loader, trail, debug, None)

        return self._state_faq_search(query, pool, review_loader, trail, debug)

    # ── State handlers ──────────────────────────────────────────────

    def _state_faq_search(
        self,
        query: SearchQuery,
        pool: List[Candidate],
        review_loader: Optional[ReviewLoader],
        trail: List[str],
        debug: Dict[str, Any],
    ) -> AnswerResult:
        trail.append(AnswerState.FAQ_SEARCH.value)
        outcome = search_faq(pool, query.text, self.config)

        if isinstance(outcome, FaqHit):
            trail.extend([AnswerState.FAQ_HIT.value, AnswerState.DONE.value])
            debug["rescued"] = outcome.rescued
            debug["trail"] = trail
            return AnswerResult(
                state=AnswerState.FAQ_HIT,
                source=SOURCE_FAQ,
                results=[s.faq_result() for s in outcome.results],
                can_show_reviews=True,
                trail=trail,
                faq_outcome=outcome,
                debug=debug,
            )

        trail.append(AnswerState.FAQ_MISS.value)
        debug["rescued"] = False
        debug["faqMiss"] = outcome.reason
        return self._state_review_search(query, pool, review_loader, trail, debug, outcome)

    def _state_review_search(
        self,
        query: SearchQuery,
        pool: List[Candidate],
        review_loader: Optional[ReviewLoader],
        trail: List[str],
        debug: Dict[str, Any],
        faq_outcome: Optional[FaqOutcome],
    ) -> AnswerResult:
        trail.append(AnswerState.REVIEW_SEARCH.value)
        if review_loader is not None:
            reviews = as_candidates(review_loader(), self.config)
            self._count_into(debug, "reviewScan", reviews)
        else:
            reviews = pool

        outcome = search_reviews(reviews, query.text, self.config)

        if isinstance(outcome, ReviewHit):
            trail.extend([AnswerState.REVIEW_HIT.value, AnswerState.DONE.value])
            debug["trail"] = trail
            return AnswerResult(
                state=AnswerState.REVIEW_HIT,
                source=SOURCE_REVIEW,
                results=[s.review_result() for s in outcome.results],
                trail=trail,
                faq_outcome=faq_outcome,
                review_outcome=outcome,
                debug=debug,
            )

        trail.extend([AnswerState.REVIEW_MISS.value, AnswerState.DONE.value])
        debug["reviewMiss"] = outcome.reason
        debug["trail"] = trail
        message = self.config.no_reviews_message if query.want_reviews_only else self.config.not_found_message
        return AnswerResult(
            state=AnswerState.REVIEW_MISS,
            source=SOURCE_NONE,
            results=[],
            message=message,
            trail=trail,
            faq_outcome=faq_outcome,
            review_outcome=outcome,
            debug=debug,
        )

    @staticmethod
    def _count_into(debug: Dict[str, Any], key: str, candidates: List[Candidate]) -> None:
        counts = count_buckets(candidates)
        debug[key] = {
            "faqCount": counts.faq,
            "reviewCount": counts.review,
            "unknownCount": counts.unknown,
            "unknown": counts.unknown_previews,
        }


def miss_result(config: RankingConfig, reason: str, want_reviews_only: bool = False) -> AnswerResult:
    """A terminal ``source=none`` result used when upstream calls fail softly."""
    return AnswerResult(
        state=AnswerState.REVIEW_MISS,
        source=SOURCE_NONE,
        results=[],
        message=config.no_reviews_message if want_reviews_only else config.not_found_message,
        trail=[AnswerState.START.value, AnswerState.DONE.value],
        debug={"upstreamError": reason},
    )
