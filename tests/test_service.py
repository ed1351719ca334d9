# tests/test_service.py
"""End-to-end tests for AnswerService over the in-memory store."""
from __future__ import annotations

import json
import math
from typing import List

import pytest

from answerdesk.runtime.audit_writer import JsonlAuditWriter
from answerdesk.runtime.config import RankingConfig
from answerdesk.runtime.errors import InvalidInput, UpstreamUnavailable
from answerdesk.runtime.service import AnswerService
from answerdesk.runtime.trace import Trace
from answerdesk.runtime.vector_store import InMemoryVectorStore

CFG = RankingConfig(embedding_dim=3)


def _vec(similarity: float) -> List[float]:
    """Unit vector whose cosine with [1, 0, 0] equals ``similarity``."""
    return [similarity, math.sqrt(1 - similarity * similarity), 0.0]


class _Embedder:
    def __init__(self, vector=None, error=None):
        self.vector = vector or [1.0, 0.0, 0.0]
        self.error = error
        self.calls = 0

    def __call__(self, texts):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [list(self.vector) for _ in texts]


def _faq(content, similarity, url="https://shop.example/faq"):
    return {"url": url, "content": content, "meta": {"source": "faq"}, "embedding": _vec(similarity)}


def _review(body, reviewer="Kavya", embedding=None):
    return {
        "url": "https://g.page/shop",
        "content": f"Reviewer: {reviewer}\nRating: 5\nReview: {body}",
        "meta": {"source": "google-review"},
        "embedding": embedding,
    }


def _service(rows, embedder=None, config=CFG, audit_writer=None, logs=None):
    return AnswerService(
        config=config,
        embed_fn=embedder or _Embedder(),
        store=InMemoryVectorStore(rows=rows),
        audit_writer=audit_writer,
        logger=(logs.append if logs is not None else (lambda _msg: None)),
    )


class _BrokenStore(InMemoryVectorStore):
    def nearest_neighbors(self, vector, pool, k):
        raise UpstreamUnavailable("connection refused", upstream="vector_store")


# ── search ───────────────────────────────────────────────────────────


class TestSearch:
    def test_faq_hit(self):
        svc = _service([_faq("Silk sarees need dry cleaning", 0.8), _review("silk was lovely")])
        payload = svc.search("silk care")
        assert payload["source"] == "faq"
        assert payload["canShowReviews"] is True
        assert payload["results"][0]["content"] == "Silk sarees need dry cleaning"
        assert payload["results"][0]["similarity"] == pytest.approx(0.8)

    def test_debug_counts_unknown_tagged_neighbours(self):
        blog = {
            "url": "https://shop.example/blog",
            "content": "Silk blog post",
            "meta": {"source": "blog"},
            "embedding": _vec(0.9),
        }
        payload = _service([blog, _faq("Silk care", 0.8)]).search("silk", debug=True)
        assert payload["source"] == "faq"
        assert [r["content"] for r in payload["results"]] == ["Silk care"]
        candidates = payload["debug"]["candidates"]
        assert (candidates["faqCount"], candidates["unknownCount"]) == (1, 1)
        assert candidates["unknown"][0]["url"] == "https://shop.example/blog"
        assert candidates["unknown"][0]["reason"] == "unrecognised bucket tag"

    def test_review_fallback_scans_unembedded_reviews(self):
        svc = _service([_faq("Blouse sizes", 0.2), _review("silk was lovely"), _review("quick courier", "Arun")])
        payload = svc.search("silk", debug=True)
        assert payload["source"] == "google-review"
        assert payload["results"] == [{"reviewer": "Kavya", "rating": 5, "date": None, "text": "silk was lovely"}]
        assert payload["debug"]["reviewScan"]["reviewCount"] == 2
        assert payload["debug"]["topK"] == CFG.default_top_k

    def test_review_fallback_uses_vector_search_when_embedded(self):
        rows = [_faq("Blouse sizes", 0.2), _review("silk was lovely", embedding=_vec(0.4))]
        payload = _service(rows).search("silk")
        assert payload["source"] == "google-review"

    def test_reviews_only_does_not_fetch_faq(self):
        svc = _service([_faq("Silk care", 0.9), _review("silk was lovely")])
        payload = svc.search("silk", show_reviews=True)
        assert payload["source"] == "google-review"

    def test_nothing_found(self):
        payload = _service([_faq("Blouse sizes", 0.2)]).search("zari work")
        assert payload == {"source": "none", "results": [], "message": CFG.not_found_message}

    def test_review_link_added_when_configured(self):
        cfg = RankingConfig(embedding_dim=3, review_link_url="https://g.page/r/shop/review")
        payload = _service([_faq("Silk care", 0.9)], config=cfg).search("silk")
        assert payload["reviewLink"] == "https://g.page/r/shop/review"

    def test_empty_query_rejected_before_embedding(self):
        embedder = _Embedder()
        with pytest.raises(InvalidInput):
            _service([], embedder=embedder).search("   ")
        assert embedder.calls == 0

    def test_embedding_failure_is_soft_by_default(self):
        embedder = _Embedder(error=UpstreamUnavailable("timeout", upstream="embedding"))
        logs: List[str] = []
        payload = _service([_faq("Silk care", 0.9)], embedder=embedder, logs=logs).search("silk")
        assert payload["source"] == "none"
        assert payload["message"] == CFG.not_found_message
        assert any(line.startswith("[UPSTREAM]") for line in logs)

    def test_embedding_failure_raises_for_debug_callers(self):
        embedder = _Embedder(error=UpstreamUnavailable("timeout", upstream="embedding"))
        with pytest.raises(UpstreamUnavailable):
            _service([_faq("Silk care", 0.9)], embedder=embedder).search("silk", debug=True)

    def test_embedding_failure_raises_when_fail_soft_disabled(self):
        cfg = RankingConfig(embedding_dim=3, fail_soft=False)
        embedder = _Embedder(error=UpstreamUnavailable("timeout", upstream="embedding"))
        with pytest.raises(UpstreamUnavailable):
            _service([_faq("Silk care", 0.9)], embedder=embedder, config=cfg).search("silk")

    def test_wrong_embedding_dimension_is_an_upstream_failure(self):
        embedder = _Embedder(vector=[1.0, 0.0])
        with pytest.raises(UpstreamUnavailable, match="expected 3"):
            _service([_faq("Silk care", 0.9)], embedder=embedder).search("silk", debug=True)

    def test_store_failure_is_soft(self):
        svc = AnswerService(config=CFG, embed_fn=_Embedder(), store=_BrokenStore(), logger=lambda _m: None)
        payload = svc.search("silk")
        assert payload["source"] == "none"
        with pytest.raises(UpstreamUnavailable, match="connection refused"):
            svc.search("silk", debug=True)

    def test_trace_written_to_audit_log(self, tmp_path):
        writer = JsonlAuditWriter(str(tmp_path / "audit"))
        svc = _service([_faq("Silk care", 0.9)], audit_writer=writer)
        svc.search("silk")
        lines = writer.path.read_text(encoding="utf-8").splitlines()
        record = json.loads(lines[-1])
        assert record["type"] == "trace"
        assert record["query"] == "silk"
        assert [e["stage"] for e in record["events"]] == ["embedded", "faq_retrieved", "selected"]


# ── answer ───────────────────────────────────────────────────────────


class TestAnswer:
    def test_boosted_faq_beats_closer_review(self):
        rows = [_faq("Dry clean silk only", 0.5), _review("silk was lovely", embedding=_vec(0.7))]
        out = _service(rows).answer("silk care")
        assert out["from"] == "faq"
        assert out["answer"] == "Dry clean silk only"
        assert out["source"]["boosted"] == pytest.approx(0.75)

    def test_fallback_below_min_score(self):
        out = _service([_faq("Blouse sizes", 0.1)]).answer("silk care")
        assert out == {"ok": True, "from": "fallback", "answer": CFG.answer_fallback_message}

    def test_empty_message_rejected(self):
        with pytest.raises(InvalidInput):
            _service([]).answer("")

    def test_upstream_failure_falls_back(self):
        embedder = _Embedder(error=UpstreamUnavailable("timeout", upstream="embedding"))
        out = _service([_faq("Silk care", 0.9)], embedder=embedder).answer("silk")
        assert out["from"] == "fallback"


# ── query log ────────────────────────────────────────────────────────


def test_log_query_without_writer_returns_none():
    assert _service([]).log_query({"query_text": "silk"}) is None


def test_log_query_appends_record(tmp_path):
    writer = JsonlAuditWriter(str(tmp_path))
    log_id = _service([], audit_writer=writer).log_query({"query_text": "silk", "response_type": "faq"})
    record = json.loads(writer.path.read_text(encoding="utf-8").splitlines()[-1])
    assert record["id"] == log_id
    assert record["type"] == "query_log"
    assert record["query_text"] == "silk"
    assert "asked_at" in record


def test_trace_flattens_event_data():
    trace = Trace.start("silk", kind="answer", request_id="req-1")
    trace.add("ranked", candidates=2)
    assert trace.stages() == ["ranked"]
    record = trace.to_dict()
    assert record["request_id"] == "req-1"
    assert record["kind"] == "answer"
    assert record["events"][0]["candidates"] == 2
    assert record["events"][0]["offset_ms"] >= 0


def test_traces_and_query_logs_share_one_jsonl_file(tmp_path):
    writer = JsonlAuditWriter(str(tmp_path))
    trace = Trace.start("silk", request_id="req-2")
    trace.add("embedded", dim=3, vector=(0.1, 0.2))
    writer.write(trace)
    writer.write_query_log({"query_text": "silk"})
    first, second = [json.loads(line) for line in writer.path.read_text(encoding="utf-8").splitlines()]
    assert (first["type"], second["type"]) == ("trace", "query_log")
    assert first["request_id"] == "req-2"
    assert first["duration_ms"] >= 0
    assert first["events"][0]["vector"] == [0.1, 0.2]
