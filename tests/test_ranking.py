# tests/test_ranking.py
"""Tests for the FAQ and review ranking pipelines."""
from __future__ import annotations

from answerdesk.runtime.candidates import normalize_rows
from answerdesk.runtime.config import RankingConfig
from answerdesk.runtime.ranking import (
    FaqHit,
    FaqMiss,
    ReviewHit,
    ReviewMiss,
    count_buckets,
    position_bonus,
    rank_blended,
    rank_faq,
    rank_reviews,
    search_faq,
    search_reviews,
)

CFG = RankingConfig()


def _faq(content, similarity):
    return {"document_id": content[:8], "content": content, "similarity": similarity, "meta": {"source": "faq"}}


def _review(body, reviewer="Anon", similarity=None):
    return {
        "document_id": reviewer,
        "content": f"Reviewer: {reviewer}\nRating: 5\nReview: {body}",
        "similarity": similarity,
        "meta": {"source": "google-review"},
    }


def _cands(*rows):
    return normalize_rows(rows)


# ── FAQ: threshold path ──────────────────────────────────────────────


class TestFaqThreshold:
    def test_similarity_at_threshold_is_included(self):
        out = rank_faq(_cands(_faq("Blouse stitching takes 5 days", 0.55)), "blouse stitching", CFG)
        assert len(out) == 1
        assert out[0].via == "threshold"

    def test_similarity_just_below_threshold_is_excluded(self):
        outcome = search_faq(_cands(_faq("Blouse stitching takes 5 days", 0.55 - 1e-9)), "blouse stitching", CFG)
        assert isinstance(outcome, FaqMiss)
        assert outcome.considered == 1

    def test_results_bounded_and_sorted(self):
        rows = [_faq(f"passage {i}", s) for i, s in enumerate([0.6, 0.9, 0.7, 0.8, 0.65])]
        out = rank_faq(_cands(*rows), "anything", CFG)
        assert len(out) == CFG.max_faq_return
        assert [s.candidate.similarity for s in out] == [0.9, 0.8, 0.7]

    def test_faq_boost_is_additive(self):
        out = rank_faq(_cands(_faq("x", 0.6)), "x", CFG)
        assert abs(out[0].score - (0.6 + CFG.faq_boost)) < 1e-9

    def test_ties_keep_store_order(self):
        out = rank_faq(_cands(_faq("first", 0.7), _faq("second", 0.7)), "q", CFG)
        assert [s.candidate.content for s in out] == ["first", "second"]

    def test_only_faq_bucket_is_considered(self):
        cands = _cands(_review("great order", similarity=0.95), _faq("Returns within 7 days", 0.6))
        out = rank_faq(cands, "returns", CFG)
        assert [s.candidate.content for s in out] == ["Returns within 7 days"]

    def test_intent_boost_reorders_when_enabled(self):
        cfg = RankingConfig(intent_boost=0.2)
        cands = _cands(_faq("Size chart for kurtis", 0.70), _faq("Check your order status page", 0.60))
        out = rank_faq(cands, "order status", cfg)
        assert out[0].candidate.content == "Check your order status page"
        # no boost by default
        assert rank_faq(cands, "order status", CFG)[0].candidate.content == "Size chart for kurtis"

    def test_no_faq_candidates(self):
        outcome = search_faq(_cands(_review("nice")), "nice", CFG)
        assert isinstance(outcome, FaqMiss)
        assert outcome.considered == 0


# ── FAQ: keyword rescue ──────────────────────────────────────────────


class TestFaqRescue:
    def test_order_query_rescues_single_best_passage(self):
        cands = _cands(
            _faq("Our sarees come pre-pleated", 0.40),
            _faq("Track your order from the order page", 0.30),
        )
        outcome = search_faq(cands, "where is my order", CFG)
        assert isinstance(outcome, FaqHit)
        assert outcome.rescued is True
        assert len(outcome.results) == 1
        assert outcome.results[0].via == "rescue"
        assert outcome.results[0].candidate.content == "Track your order from the order page"

    def test_just_below_threshold_can_still_be_rescued(self):
        cands = _cands(_faq("Track your order with the courier link", 0.55 - 1e-9))
        out = rank_faq(cands, "where is my order", CFG)
        assert len(out) == 1
        assert out[0].via == "rescue"

    def test_rescue_tie_keeps_earliest(self):
        cands = _cands(_faq("delivery in 3 days", 0.3), _faq("courier partner list", 0.2))
        out = rank_faq(cands, "delivery status", CFG)
        assert [s.candidate.content for s in out] == ["delivery in 3 days"]

    def test_no_rescue_without_intent_keyword(self):
        cands = _cands(_faq("Track your order here", 0.30))
        assert rank_faq(cands, "fabric care", CFG) == []

    def test_no_rescue_when_no_passage_has_keyword(self):
        cands = _cands(_faq("Dry clean only", 0.30))
        outcome = search_faq(cands, "where is my order", CFG)
        assert isinstance(outcome, FaqMiss)

    def test_rescue_not_used_when_threshold_passes(self):
        cands = _cands(_faq("Dry clean only", 0.60), _faq("Track your order here", 0.30))
        outcome = search_faq(cands, "where is my order", CFG)
        assert outcome.rescued is False
        assert [s.candidate.content for s in outcome.results] == ["Dry clean only"]


# ── Review pipeline ──────────────────────────────────────────────────


class TestReviews:
    def test_ranked_by_lexical_overlap(self):
        cands = _cands(
            _review("The fabric is soft", "A"),
            _review("Delivery was quick and fabric great", "B"),
            _review("Nice colour", "C"),
        )
        out = rank_reviews(cands, "fabric delivery", CFG)
        assert [s.review.reviewer for s in out] == ["B", "A"]
        assert [s.lexical for s in out] == [2, 1]

    def test_positional_bonus_breaks_ties_by_store_order(self):
        cands = _cands(_review("soft fabric", "first"), _review("fabric feels nice", "second"))
        out = rank_reviews(cands, "fabric", CFG)
        assert [s.review.reviewer for s in out] == ["first", "second"]

    def test_positional_bonus_never_overrides_a_lexical_point(self):
        rows = [_review("fabric", "early")] + [_review("filler text", f"f{i}") for i in range(10)]
        rows.append(_review("fabric and colour", "late"))
        out = rank_reviews(_cands(*rows), "fabric colour", CFG)
        assert out[0].review.reviewer == "late"

    def test_zero_overlap_reviews_are_dropped(self):
        outcome = search_reviews(_cands(_review("Nice colour")), "fabric", CFG)
        assert isinstance(outcome, ReviewMiss)
        assert outcome.considered == 1

    def test_bounded_by_max_review_return(self):
        cands = _cands(*[_review("great fabric", str(i)) for i in range(6)])
        outcome = search_reviews(cands, "fabric", CFG)
        assert isinstance(outcome, ReviewHit)
        assert len(outcome.results) == CFG.max_review_return

    def test_review_result_shape(self):
        out = rank_reviews(_cands(_review("Great fit", "Jane Doe")), "fit", CFG)
        assert out[0].review_result() == {"reviewer": "Jane Doe", "rating": 5, "date": None, "text": "Great fit"}

    def test_faq_rows_ignored(self):
        assert rank_reviews(_cands(_faq("fabric care", 0.9)), "fabric", CFG) == []

    def test_query_without_words(self):
        assert isinstance(search_reviews(_cands(_review("fabric")), "?!", CFG), ReviewMiss)

    def test_position_bonus_strictly_decreasing_below_one(self):
        bonuses = [position_bonus(i, 5, CFG) for i in range(5)]
        assert bonuses == sorted(bonuses, reverse=True)
        assert len(set(bonuses)) == 5
        assert all(0 < b < 1 for b in bonuses)
        assert position_bonus(0, 0, CFG) == 0.0


# ── Shared properties ────────────────────────────────────────────────


def test_empty_and_missing_candidates():
    assert rank_faq([], "order", CFG) == []
    assert rank_reviews(None, "order", CFG) == []


def test_ranking_is_idempotent():
    cands = _cands(
        _faq("Track your order", 0.6),
        _faq("Returns in 7 days", 0.6),
        _review("order came fast", "R"),
    )
    assert rank_faq(cands, "order", CFG) == rank_faq(cands, "order", CFG)
    assert rank_reviews(cands, "order", CFG) == rank_reviews(cands, "order", CFG)


def test_blended_ranking_prefers_boosted_faq():
    cands = _cands(_review("review passage", "R", similarity=0.70), _faq("faq passage", 0.50), "junk")
    out = rank_blended(cands, CFG)
    assert [s.candidate.bucket.value for s in out] == ["faq", "review"]
    assert rank_blended(cands, CFG, limit=1)[0].candidate.content == "faq passage"


def test_count_buckets_previews_unknown_rows():
    cands = _cands(_faq("a", 0.5), _review("b"), {"content": "c", "meta": {"source": "blog"}}, 42)
    counts = count_buckets(cands)
    assert (counts.faq, counts.review, counts.unknown) == (1, 1, 2)
    assert [p["position"] for p in counts.unknown_previews] == [2, 3]
    assert counts.unknown_previews[0]["reason"] == "unrecognised bucket tag"
