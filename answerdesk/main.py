"""
answerdesk HTTP API: the storefront widget talks to these routes.
Run with: python -m uvicorn answerdesk.main:app --port 8000
"""

from __future__ import annotations

import os
from typing import Optional

import requests
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from answerdesk.ingest import Ingestor
from answerdesk.runtime.audit_writer import JsonlAuditWriter
from answerdesk.runtime.config import RankingConfig
from answerdesk.runtime.embeddings import get_embed_fn
from answerdesk.runtime.errors import AnswerDeskError, InvalidInput, UpstreamUnavailable
from answerdesk.runtime.service import AnswerService
from answerdesk.runtime.vector_store import InMemoryVectorStore, PgVectorStore, VectorStore

APP_VERSION = os.getenv("APP_VERSION", "0.1.0")

app = FastAPI(title="answerdesk API", version=APP_VERSION)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# ---------------------------------------------------------------------------
# Singleton state: config, store and embedder are built once, read-only after
# ---------------------------------------------------------------------------
_service: AnswerService | None = None


def _build_store(config: RankingConfig) -> VectorStore:
    dsn = os.getenv("DATABASE_URL") or os.getenv("SUPABASE_CONN")
    if dsn:
        return PgVectorStore(dsn, review_domain_markers=config.review_domain_markers)
    store_json = os.getenv("ANSWERDESK_STORE_JSON")
    if store_json:
        return InMemoryVectorStore.from_json(store_json, config.review_domain_markers)
    raise RuntimeError("Missing DATABASE_URL / SUPABASE_CONN (or ANSWERDESK_STORE_JSON)")


def get_service() -> AnswerService:
    global _service
    if _service is None:
        config = RankingConfig.from_env()
        store = _build_store(config)
        dims = config.embedding_dim if config.embedding_model.startswith("text-embedding-3") else None
        _service = AnswerService(
            config=config,
            embed_fn=get_embed_fn(model=config.embedding_model, dimensions=dims),
            store=store,
            audit_writer=JsonlAuditWriter(os.getenv("ANSWERDESK_AUDIT_DIR", ".answerdesk/audit")),
        )
        print(f"[BOOT] answerdesk ready store={type(store).__name__} faq_min_similarity={config.faq_min_similarity}")
    return _service


def _service_or_500() -> AnswerService:
    try:
        return get_service()
    except (RuntimeError, ValueError) as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------
class SearchRequest(BaseModel):
    query: str = ""
    topK: Optional[int] = None
    showReviews: bool = False
    debug: bool = False


class AnswerRequest(BaseModel):
    message: str = ""
    debug: bool = False


class QueryLogRequest(BaseModel):
    query_text: Optional[str] = None
    session_id: Optional[str] = None
    url_path: Optional[str] = None
    user_agent: Optional[str] = None
    response_type: str = "fallback"
    faq_id: Optional[str] = None
    faq_title: Optional[str] = None
    reviews_count: Optional[int] = None
    response_ms: Optional[int] = None


class IngestRequest(BaseModel):
    url: Optional[str] = None
    sitemap: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@app.get("/health", response_model=HealthResponse, tags=["Meta"])
def health():
    return HealthResponse(status="ok", version=APP_VERSION)


@app.get("/version", tags=["Meta"])
def version():
    return {"version": APP_VERSION}


@app.get("/search", tags=["Search"])
def search_alive():
    return {"ok": True, "msg": "search route is alive"}


@app.post("/search", tags=["Search"])
def search(req: SearchRequest):
    svc = _service_or_500()
    try:
        payload = svc.search(req.query, top_k=req.topK, show_reviews=req.showReviews, debug=req.debug)
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except UpstreamUnavailable as e:
        raise HTTPException(status_code=502, detail=f"{e.upstream}: {e}") from e
    return {"ok": True, "query": req.query.strip(), **payload}


@app.post("/answer", tags=["Search"])
def answer(req: AnswerRequest):
    svc = _service_or_500()
    try:
        return svc.answer(req.message, debug=req.debug)
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail='Missing "message"') from e
    except UpstreamUnavailable as e:
        raise HTTPException(status_code=502, detail=f"{e.upstream}: {e}") from e


@app.post("/log", tags=["Audit"])
def log_query(req: QueryLogRequest):
    if not (req.query_text or "").strip():
        raise HTTPException(status_code=400, detail="query_text required")
    svc = _service_or_500()
    log_id = svc.log_query(req.model_dump())
    return {"ok": True, "id": log_id}


@app.post("/ingest", tags=["Ingest"])
def ingest(req: IngestRequest):
    if not req.url and not req.sitemap:
        raise HTTPException(status_code=400, detail="Provide {url} or {sitemap}")
    svc = _service_or_500()
    ingestor = Ingestor(store=svc.store, embed_fn=svc.embed_fn)
    try:
        if req.url:
            return ingestor.ingest_url(req.url).to_dict()
        results = ingestor.ingest_sitemap(req.sitemap)
    except (AnswerDeskError, requests.RequestException) as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    return {"ok": True, "count": len(results), "results": [r.to_dict() for r in results]}
