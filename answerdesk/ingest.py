# answerdesk/ingest.py
"""
Ingestion: fetch page -> clean text -> chunk -> embed -> store.

Pure side effect; nothing here is consumed by ranking. Sitemap ingestion
reports per-URL failures instead of raising so one bad page does not abort
the batch.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from bs4 import BeautifulSoup

from answerdesk.runtime.embeddings import EmbedFn
from answerdesk.runtime.errors import AnswerDeskError
from answerdesk.runtime.vector_store import VectorStore

CHUNK_SIZE = 1500
CHUNK_OVERLAP = 200
MIN_CONTENT_CHARS = 100
SITEMAP_LIMIT = 50
_USER_AGENT = "Mozilla/5.0 (answerdesk-ingest)"


@dataclass
class IngestResult:
    url: str
    ok: bool = False
    chunks: int = 0
    skipped: bool = False
    reason: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"url": self.url}
        if self.skipped:
            out.update({"skipped": True, "reason": self.reason})
        elif self.ok:
            out.update({"ok": True, "chunks": self.chunks})
        else:
            out.update({"ok": False, "error": self.error})
        return out


def clean_text(raw: str) -> str:
    return re.sub(r"\s+", " ", (raw or "").replace("\u00a0", " ")).strip()


def chunk_text(text: str, chunk_size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> List[str]:
    """Fixed-size character windows with overlap."""
    if chunk_size <= overlap:
        raise ValueError("chunk_size must be larger than overlap")
    chunks: List[str] = []
    i = 0
    while i < len(text):
        chunks.append(text[i : i + chunk_size])
        i += chunk_size - overlap
    return [c for c in chunks if c.strip()]


def extract_page(html: str) -> Tuple[str, str]:
    """Return (title, body text) with scripts and styles removed."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    title = clean_text(soup.title.get_text()) if soup.title else ""
    body = soup.body or soup
    return title, clean_text(body.get_text(" "))


def fetch_page(url: str, timeout: int = 20) -> Tuple[str, str]:
    res = requests.get(url, headers={"user-agent": _USER_AGENT}, timeout=timeout)
    if not res.ok:
        raise AnswerDeskError(f"Fetch failed {res.status_code} {res.reason} for {url}")
    return extract_page(res.text)


def sitemap_urls(xml: str, limit: int = SITEMAP_LIMIT) -> List[str]:
    soup = BeautifulSoup(xml, "html.parser")
    locs = [clean_text(loc.get_text()) for loc in soup.find_all("loc")]
    return [u for u in locs if u][:limit]


def format_review(review: Dict[str, Any]) -> str:
    """Render a review dict in the labelled line format the parser reads."""
    lines = []
    for label, key in (("Reviewer", "reviewer"), ("Rating", "rating"), ("Date", "date"), ("Review", "text")):
        val = review.get(key)
        if val is not None and str(val).strip():
            lines.append(f"{label}: {' '.join(str(val).split())}")
    return "\n".join(lines)


class Ingestor:
    """Chunks, embeds and upserts documents into a vector store."""

    def __init__(
        self,
        store: VectorStore,
        embed_fn: Optional[EmbedFn] = None,
        fetch: Callable[[str], Tuple[str, str]] = fetch_page,
        logger: Callable[[str], Any] = print,
    ) -> None:
        self.store = store
        self.embed_fn = embed_fn
        self.fetch = fetch
        self.logger = logger

    def ingest_text(
        self,
        url: str,
        title: str,
        content: str,
        meta: Optional[Dict[str, Any]] = None,
        embed: bool = True,
    ) -> IngestResult:
        """Store pre-fetched text. ``embed=False`` stores chunks without vectors (e.g. reviews)."""
        content = clean_text(content)
        if len(content) < MIN_CONTENT_CHARS:
            return IngestResult(url=url, skipped=True, reason="too-short")
        chunks = chunk_text(content)
        embeddings = self.embed_fn(chunks) if (embed and self.embed_fn is not None) else None
        self.store.upsert_document(url, title, content, chunks, embeddings=embeddings, meta=meta)
        self.logger(f"[INGEST] {url}: {len(chunks)} chunks (embedded={embeddings is not None})")
        return IngestResult(url=url, ok=True, chunks=len(chunks))

    def ingest_review(self, url: str, review: Dict[str, Any], embed: bool = False) -> IngestResult:
        """
        Store one review as a single labelled chunk.

        Line structure is kept (no whitespace cleaning) so the review parser
        can read the ``Reviewer:`` / ``Rating:`` / ``Date:`` / ``Review:`` lines.
        """
        text = format_review(review)
        if not text:
            return IngestResult(url=url, skipped=True, reason="empty-review")
        embeddings = self.embed_fn([text]) if (embed and self.embed_fn is not None) else None
        self.store.upsert_document(
            url,
            str(review.get("reviewer") or "review"),
            text,
            [text],
            embeddings=embeddings,
            meta={"source": "google-review"},
        )
        return IngestResult(url=url, ok=True, chunks=1)

    def ingest_url(self, url: str, meta: Optional[Dict[str, Any]] = None) -> IngestResult:
        title, content = self.fetch(url)
        return self.ingest_text(url, title, content, meta=meta)

    def ingest_sitemap(self, sitemap_url: str, limit: int = SITEMAP_LIMIT) -> List[IngestResult]:
        res = requests.get(sitemap_url, headers={"user-agent": _USER_AGENT}, timeout=20)
        res.raise_for_status()
        results: List[IngestResult] = []
        for u in sitemap_urls(res.text, limit=limit):
            try:
                results.append(self.ingest_url(u))
            except Exception as e:
                self.logger(f"[INGEST][WARN] {u} failed: {e}")
                results.append(IngestResult(url=u, ok=False, error=str(e) or "failed"))
        return results
