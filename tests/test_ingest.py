# tests/test_ingest.py
from __future__ import annotations

import pytest

from answerdesk import ingest
from answerdesk.ingest import Ingestor, chunk_text, clean_text, extract_page, format_review, sitemap_urls
from answerdesk.runtime.candidates import Bucket
from answerdesk.runtime.reviews import parse_review
from answerdesk.runtime.vector_store import InMemoryVectorStore

_LONG = "Silk sarees should be dry cleaned and stored wrapped in muslin cloth. " * 5

_HTML = """
<html><head><title>Care Guide</title><style>body {color: red}</style></head>
<body><script>var x = 1;</script><h1>Silk&nbsp;care</h1><p>Dry clean only.</p></body></html>
"""

_SITEMAP = """<?xml version="1.0"?>
<urlset><url><loc>https://shop.example/a</loc></url><url><loc> https://shop.example/b </loc></url></urlset>
"""


def test_clean_text_collapses_whitespace():
    assert clean_text("  a b \n\t c ") == "a b c"
    assert clean_text(None) == ""


def test_chunk_text_windows_overlap():
    chunks = chunk_text("a" * 3000)
    assert [len(c) for c in chunks] == [1500, 1500, 400]


def test_chunk_text_rejects_overlap_not_smaller_than_size():
    with pytest.raises(ValueError):
        chunk_text("abc", chunk_size=10, overlap=10)


def test_extract_page_drops_scripts_and_styles():
    title, body = extract_page(_HTML)
    assert title == "Care Guide"
    assert body == "Silk care Dry clean only."


def test_sitemap_urls():
    assert sitemap_urls(_SITEMAP) == ["https://shop.example/a", "https://shop.example/b"]
    assert sitemap_urls(_SITEMAP, limit=1) == ["https://shop.example/a"]


def test_format_review_skips_empty_fields():
    text = format_review({"reviewer": "Jane Doe", "rating": 5, "date": None, "text": "Great\nfit"})
    assert text == "Reviewer: Jane Doe\nRating: 5\nReview: Great fit"


class TestIngestor:
    def test_short_page_skipped(self):
        result = Ingestor(InMemoryVectorStore(), logger=lambda _m: None).ingest_text("u", "t", "too short")
        assert result.to_dict() == {"url": "u", "skipped": True, "reason": "too-short"}

    def test_text_is_chunked_and_embedded(self):
        store = InMemoryVectorStore()
        embed = lambda texts: [[1.0, 0.0] for _ in texts]
        result = Ingestor(store, embed_fn=embed, logger=lambda _m: None).ingest_text(
            "https://shop.example/care", "Care", _LONG
        )
        assert result.to_dict() == {"url": "https://shop.example/care", "ok": True, "chunks": 1}
        assert store.has_embeddings(Bucket.FAQ)

    def test_review_round_trips_through_parser(self):
        store = InMemoryVectorStore()
        review = {"reviewer": "Jane Doe", "rating": 5, "date": "2024-01-01", "text": "Great fit"}
        result = Ingestor(store).ingest_review("https://g.page/shop#r1", review)
        assert result.ok
        rows = store.scan(Bucket.REVIEW, 10)
        assert len(rows) == 1
        assert parse_review(rows[0]["content"]).to_result() == review
        assert not store.has_embeddings(Bucket.REVIEW)

    def test_empty_review_skipped(self):
        result = Ingestor(InMemoryVectorStore()).ingest_review("u", {"reviewer": " "})
        assert result.skipped
        assert result.reason == "empty-review"

    def test_ingest_url_uses_fetcher(self):
        store = InMemoryVectorStore()
        ingestor = Ingestor(store, fetch=lambda url: ("Care", _LONG), logger=lambda _m: None)
        assert ingestor.ingest_url("https://shop.example/care").ok
        assert store.scan(Bucket.FAQ, 10)[0]["meta"]["title"] == "Care"

    def test_sitemap_reports_failures_per_url(self, monkeypatch):
        class _Resp:
            text = _SITEMAP

            def raise_for_status(self):
                return None

        def fake_fetch(url):
            if url.endswith("/b"):
                raise RuntimeError("boom")
            return "A", _LONG

        monkeypatch.setattr(ingest.requests, "get", lambda *a, **kw: _Resp())
        logs = []
        results = Ingestor(InMemoryVectorStore(), fetch=fake_fetch, logger=logs.append).ingest_sitemap(
            "https://shop.example/sitemap.xml"
        )
        assert [r.to_dict() for r in results] == [
            {"url": "https://shop.example/a", "ok": True, "chunks": 1},
            {"url": "https://shop.example/b", "ok": False, "error": "boom"},
        ]
        assert any("[INGEST][WARN]" in line for line in logs)
