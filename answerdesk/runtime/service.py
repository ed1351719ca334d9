# answerdesk/runtime/service.py
"""
AnswerService: wires the external collaborators around the ranking core.

    validate -> embed query -> nearest neighbours -> AnswerSelector
                                     (reviews fetched lazily on FAQ miss)

Upstream failures (embedding, vector store) follow ``config.fail_soft``:
debug callers always see the error; everyone else gets an explicit
``source=none`` result. InvalidInput is raised before any upstream call.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from answerdesk.runtime.answer_fsm import AnswerSelector, SearchQuery, as_candidates, miss_result
from answerdesk.runtime.audit_writer import JsonlAuditWriter
from answerdesk.runtime.candidates import Bucket
from answerdesk.runtime.config import RankingConfig
from answerdesk.runtime.embeddings import EmbedFn, embed_query
from answerdesk.runtime.errors import UpstreamUnavailable
from answerdesk.runtime.ranking import rank_blended
from answerdesk.runtime.trace import Trace
from answerdesk.runtime.vector_store import VectorStore


class AnswerService:
    """Stateless per request; safe to share across concurrent requests."""

    def __init__(
        self,
        config: RankingConfig,
        embed_fn: EmbedFn,
        store: VectorStore,
        audit_writer: Optional[JsonlAuditWriter] = None,
        logger: Callable[[str], Any] = print,
    ) -> None:
        self.config = config
        self.embed_fn = embed_fn
        self.store = store
        self.audit_writer = audit_writer
        self.logger = logger
        self.selector = AnswerSelector(config)

    # ------------------------------------------------------------------
    # Search: FAQ first, reviews as fallback
    # ------------------------------------------------------------------
    def search(
        self,
        query: Any,
        top_k: Any = None,
        show_reviews: bool = False,
        debug: bool = False,
    ) -> Dict[str, Any]:
        q = SearchQuery.build(query, self.config, top_k=top_k, want_reviews_only=show_reviews, debug=debug)
        trace = Trace.start(q.text, kind="search")
        self.logger(f"[SEARCH] {trace.request_id}: {q.text!r} top_k={q.top_k} reviews_only={q.want_reviews_only}")

        vector_cache: Dict[str, List[float]] = {}

        def query_vector() -> List[float]:
            if "v" not in vector_cache:
                vector_cache["v"] = embed_query(self.embed_fn, q.text, self.config.embedding_dim)
                trace.add("embedded", dim=len(vector_cache["v"]))
            return vector_cache["v"]

        def load_reviews() -> List[Dict[str, Any]]:
            limit = self.config.review_scan_limit
            if self.store.has_embeddings(Bucket.REVIEW):
                rows = self.store.nearest_neighbors(query_vector(), Bucket.REVIEW, limit)
                trace.add("reviews_loaded", mode="vector", rows=len(rows))
            else:
                rows = self.store.scan(Bucket.REVIEW, limit)
                trace.add("reviews_loaded", mode="scan", rows=len(rows))
            return rows

        try:
            try:
                faq_rows: List[Dict[str, Any]] = []
                if not q.want_reviews_only:
                    # unfiltered: the normalizer buckets rows, and debug counts see unknown tags
                    faq_rows = self.store.nearest_neighbors(query_vector(), None, q.top_k)
                    trace.add("faq_retrieved", rows=len(faq_rows))
                result = self.selector.select(q, faq_rows, review_loader=load_reviews)
            except UpstreamUnavailable as e:
                self.logger(f"[UPSTREAM] {trace.request_id}: {e.upstream} failed: {e}")
                trace.add("upstream_error", upstream=e.upstream, error=str(e))
                if q.debug or not self.config.fail_soft:
                    raise
                result = miss_result(self.config, f"{e.upstream}: {e}", q.want_reviews_only)

            trace.add("selected", state=result.state.value, source=result.source, results=len(result.results))
            payload = result.to_payload(include_debug=q.debug, review_link=self.config.review_link_url)
            if q.debug:
                payload["debug"]["requestId"] = trace.request_id
                payload["debug"]["topK"] = q.top_k
            return payload
        finally:
            self._audit(trace)

    # ------------------------------------------------------------------
    # Answer: single best passage across pools, FAQ boosted
    # ------------------------------------------------------------------
    def answer(self, query: Any, debug: bool = False) -> Dict[str, Any]:
        q = SearchQuery.build(query, self.config, debug=debug)
        trace = Trace.start(q.text, kind="answer")
        self.logger(f"[ANSWER] {trace.request_id}: {q.text!r}")

        try:
            try:
                vec = embed_query(self.embed_fn, q.text, self.config.embedding_dim)
                k = self.config.answer_pool_size
                rows = list(self.store.nearest_neighbors(vec, Bucket.FAQ, k))
                if self.store.has_embeddings(Bucket.REVIEW):
                    rows.extend(self.store.nearest_neighbors(vec, Bucket.REVIEW, k))
            except UpstreamUnavailable as e:
                self.logger(f"[UPSTREAM] {trace.request_id}: {e.upstream} failed: {e}")
                trace.add("upstream_error", upstream=e.upstream, error=str(e))
                if q.debug or not self.config.fail_soft:
                    raise
                return self._answer_fallback(q, trace, reason=str(e))

            rows.sort(key=lambda r: float(r.get("similarity") or 0.0), reverse=True)
            ranked = rank_blended(as_candidates(rows[:k], self.config), self.config)
            trace.add("ranked", candidates=len(ranked))

            best = ranked[0] if ranked else None
            if best is None or best.score < self.config.answer_min_score:
                return self._answer_fallback(q, trace, reason="below answer_min_score")

            trace.add("answered", bucket=best.candidate.bucket.value, score=best.score)
            return {
                "ok": True,
                "from": best.candidate.bucket.value,
                "query": q.text,
                "answer": best.candidate.content,
                "source": {
                    "url": best.candidate.url,
                    "bucket": best.candidate.bucket.value,
                    "similarity": best.candidate.similarity,
                    "boosted": best.score,
                },
            }
        finally:
            self._audit(trace)

    def _answer_fallback(self, q: SearchQuery, trace: Trace, reason: str) -> Dict[str, Any]:
        trace.add("fallback", reason=reason)
        out: Dict[str, Any] = {"ok": True, "from": "fallback", "answer": self.config.answer_fallback_message}
        if q.debug:
            out["debug"] = {"reason": reason, "requestId": trace.request_id}
        return out

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------
    def log_query(self, entry: Dict[str, Any]) -> Optional[str]:
        if self.audit_writer is None:
            return None
        return self.audit_writer.write_query_log(entry)

    def _audit(self, trace: Trace) -> None:
        if self.audit_writer is None:
            return
        try:
            self.audit_writer.write(trace)
        except Exception as e:
            self.logger(f"[AUDIT] failed to write trace: {e}")
