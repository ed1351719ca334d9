# answerdesk/runtime/vector_store.py
"""
Vector store adapters.

Contract (VectorStore protocol):
    nearest_neighbors(vector, pool, k) -> [row]   rows carry a similarity;
                                                  pool=None searches every row
    scan(pool, limit)                  -> [row]   metadata-filtered, no similarity
    has_embeddings(pool)               -> bool
    upsert_document(...)               -> document id

A row is a plain dict:
    {document_id, url, meta, chunk_meta, chunk_index, content[, similarity]}

Pool membership uses the same tag chain as ``candidates.classify_bucket``,
so a row filtered into a pool always normalizes into that bucket.

Adapters:
    InMemoryVectorStore  pure Python cosine search (tests, local runs)
    PgVectorStore        PostgreSQL + pgvector through SQLAlchemy/psycopg

All backend failures surface as ``UpstreamUnavailable``.
"""
from __future__ import annotations

import json
import math
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from answerdesk.runtime.candidates import Bucket, classify_bucket, tags_for
from answerdesk.runtime.errors import UpstreamUnavailable


@runtime_checkable
class VectorStore(Protocol):
    def nearest_neighbors(self, vector: Sequence[float], pool: Optional[Bucket], k: int) -> List[Dict[str, Any]]: ...

    def scan(self, pool: Bucket, limit: int) -> List[Dict[str, Any]]: ...

    def has_embeddings(self, pool: Bucket) -> bool: ...

    def upsert_document(
        self,
        url: str,
        title: str,
        content: str,
        chunks: List[str],
        embeddings: Optional[List[List[float]]] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> str: ...


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na < 1e-9 or nb < 1e-9:
        return 0.0
    return dot / (na * nb)


class InMemoryVectorStore:
    """Dict-backed store; pool membership follows the candidate normalizer."""

    def __init__(
        self,
        rows: Optional[List[Dict[str, Any]]] = None,
        review_domain_markers: Sequence[str] = (),
    ) -> None:
        self._rows: List[Dict[str, Any]] = []
        self.review_domain_markers = tuple(review_domain_markers)
        for r in rows or []:
            self.add_row(r)

    @classmethod
    def from_json(cls, path: str | Path, review_domain_markers: Sequence[str] = ()) -> "InMemoryVectorStore":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        rows = data.get("rows", []) if isinstance(data, dict) else data
        return cls(rows=rows, review_domain_markers=review_domain_markers)

    def add_row(self, row: Dict[str, Any]) -> None:
        r = dict(row)
        r.setdefault("document_id", str(uuid.uuid4()))
        r.setdefault("url", None)
        r.setdefault("meta", {})
        r.setdefault("chunk_meta", None)
        r.setdefault("chunk_index", 0)
        r.setdefault("embedding", None)
        self._rows.append(r)

    def _in_pool(self, row: Dict[str, Any], pool: Bucket) -> bool:
        bucket = classify_bucket(row.get("chunk_meta"), row.get("meta"), row.get("url"), self.review_domain_markers)
        return bucket == pool

    @staticmethod
    def _public(row: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in row.items() if k != "embedding"}

    def nearest_neighbors(self, vector: Sequence[float], pool: Optional[Bucket], k: int) -> List[Dict[str, Any]]:
        scored = []
        for r in self._rows:
            if r.get("embedding") is None:
                continue
            if pool is not None and not self._in_pool(r, pool):
                continue
            out = self._public(r)
            out["similarity"] = _cosine(vector, r["embedding"])
            scored.append(out)
        scored.sort(key=lambda r: r["similarity"], reverse=True)
        return scored[: max(0, k)]

    def scan(self, pool: Bucket, limit: int) -> List[Dict[str, Any]]:
        # newest first, like ``order by dc.id desc``
        rows = [self._public(r) for r in reversed(self._rows) if self._in_pool(r, pool)]
        return rows[: max(0, limit)]

    def has_embeddings(self, pool: Bucket) -> bool:
        return any(r.get("embedding") is not None and self._in_pool(r, pool) for r in self._rows)

    def upsert_document(
        self,
        url: str,
        title: str,
        content: str,
        chunks: List[str],
        embeddings: Optional[List[List[float]]] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> str:
        existing = next((r["document_id"] for r in self._rows if r.get("url") == url), None)
        doc_id = existing or str(uuid.uuid4())
        self._rows = [r for r in self._rows if r.get("document_id") != doc_id]
        for i, chunk in enumerate(chunks):
            self.add_row(
                {
                    "document_id": doc_id,
                    "url": url,
                    "meta": dict(meta or {}, title=title),
                    "chunk_index": i,
                    "content": chunk,
                    "embedding": embeddings[i] if embeddings else None,
                }
            )
        return doc_id


# ── PostgreSQL + pgvector ───────────────────────────────────────────

# Same resolution as classify_bucket for document-level tags: first
# non-blank tag wins, compared lower-cased, then the URL markers, then faq.
_TAG_EXPR = (
    "coalesce("
    "nullif(lower(trim(d.meta->>'source')), ''), "
    "nullif(lower(trim(d.meta->>'type')), ''), "
    "case when {url_match} then 'review' end, "
    "'faq')"
)

_SQL_NEAREST = """
select dc.document_id, d.url, d.meta, dc.chunk_index, dc.content,
       1 - (dc.embedding <=> cast(:vec as vector)) as similarity
from document_chunks dc
join documents d on d.id = dc.document_id
where dc.embedding is not null{pool}
order by dc.embedding <=> cast(:vec as vector)
limit :k
"""

_SQL_SCAN = """
select dc.document_id, d.url, d.meta, dc.chunk_index, dc.content
from document_chunks dc
join documents d on d.id = dc.document_id
where 1 = 1{pool}
order by dc.id desc
limit :limit
"""

_SQL_HAS_EMBEDDINGS = """
select exists (
  select 1 from document_chunks dc
  join documents d on d.id = dc.document_id
  where dc.embedding is not null{pool}
) as present
"""

_SQL_UPSERT_DOC = """
insert into documents (id, url, title, content, meta)
values (:id, :url, :title, :content, cast(:meta as jsonb))
on conflict (url) do update set
  title = excluded.title,
  content = excluded.content,
  meta = excluded.meta
returning id
"""

_SQL_DELETE_CHUNKS = "delete from document_chunks where document_id = :doc_id"

_SQL_INSERT_CHUNK = """
insert into document_chunks (document_id, chunk_index, content, embedding)
values (:doc_id, :idx, :content, cast(:vec as vector))
"""


def _vector_literal(vec: Optional[Sequence[float]]) -> Optional[str]:
    if vec is None:
        return None
    return "[" + ",".join(repr(float(v)) for v in vec) + "]"


def _like_pattern(marker: str) -> str:
    escaped = marker.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _decode_meta(meta: Any) -> Any:
    # json (not jsonb) columns and some drivers hand back text
    if isinstance(meta, (str, bytes)):
        try:
            return json.loads(meta)
        except ValueError:
            return None
    return meta


def _sqlalchemy_dsn(dsn: str) -> str:
    """Point bare postgres DSNs at the psycopg (v3) driver."""
    for prefix in ("postgres://", "postgresql://"):
        if dsn.startswith(prefix):
            return "postgresql+psycopg://" + dsn[len(prefix) :]
    return dsn


class PgVectorStore:
    """pgvector-backed store over ``documents`` / ``document_chunks``."""

    def __init__(
        self,
        dsn: Optional[str] = None,
        engine: Any = None,
        review_domain_markers: Sequence[str] = (),
    ) -> None:
        import sqlalchemy

        self._sa = sqlalchemy
        if engine is None:
            if not dsn:
                raise ValueError("PgVectorStore requires a DSN or an engine")
            engine = sqlalchemy.create_engine(_sqlalchemy_dsn(dsn), pool_pre_ping=True)
        self.engine = engine
        self.review_domain_markers = tuple(m for m in review_domain_markers if m)

    def _text(self, sql: str, *expanding: str):
        stmt = self._sa.text(sql)
        if expanding:
            stmt = stmt.bindparams(*(self._sa.bindparam(name, expanding=True) for name in expanding))
        return stmt

    def _pool_clause(self, pool: Optional[Bucket]) -> Tuple[str, Dict[str, Any]]:
        """SQL fragment and params restricting rows to ``pool``; None means every row."""
        if pool is None:
            return "", {}
        params: Dict[str, Any] = {"tags": list(tags_for(pool))}
        likes = []
        for i, marker in enumerate(self.review_domain_markers):
            params[f"marker_{i}"] = _like_pattern(marker)
            likes.append(f"lower(coalesce(d.url, '')) like :marker_{i} escape '\\'")
        url_match = " or ".join(likes) if likes else "1 = 0"
        expr = _TAG_EXPR.format(url_match=url_match)
        return f"\n  and {expr} in :tags", params

    def _fetch(self, sql: str, pool: Optional[Bucket], params: Dict[str, Any]) -> List[Dict[str, Any]]:
        clause, pool_params = self._pool_clause(pool)
        expanding = ("tags",) if pool is not None else ()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(self._text(sql.format(pool=clause), *expanding), {**params, **pool_params})
                return [dict(r) for r in result.mappings().all()]
        except self._sa.exc.SQLAlchemyError as exc:
            raise UpstreamUnavailable(f"vector store query failed: {exc}", upstream="vector_store") from exc

    @staticmethod
    def _rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        for r in rows:
            r["meta"] = _decode_meta(r.get("meta"))
            r.setdefault("chunk_meta", None)
        return rows

    def nearest_neighbors(self, vector: Sequence[float], pool: Optional[Bucket], k: int) -> List[Dict[str, Any]]:
        return self._rows(self._fetch(_SQL_NEAREST, pool, {"vec": _vector_literal(vector), "k": int(k)}))

    def scan(self, pool: Bucket, limit: int) -> List[Dict[str, Any]]:
        return self._rows(self._fetch(_SQL_SCAN, pool, {"limit": int(limit)}))

    def has_embeddings(self, pool: Bucket) -> bool:
        rows = self._fetch(_SQL_HAS_EMBEDDINGS, pool, {})
        return bool(rows and rows[0].get("present"))

    def upsert_document(
        self,
        url: str,
        title: str,
        content: str,
        chunks: List[str],
        embeddings: Optional[List[List[float]]] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> str:
        try:
            with self.engine.begin() as conn:
                doc_id = conn.execute(
                    self._text(_SQL_UPSERT_DOC),
                    {
                        "id": str(uuid.uuid4()),
                        "url": url,
                        "title": title,
                        "content": content,
                        "meta": json.dumps(meta or {}),
                    },
                ).scalar_one()
                conn.execute(self._text(_SQL_DELETE_CHUNKS), {"doc_id": doc_id})
                for i, chunk in enumerate(chunks):
                    conn.execute(
                        self._text(_SQL_INSERT_CHUNK),
                        {
                            "doc_id": doc_id,
                            "idx": i,
                            "content": chunk,
                            "vec": _vector_literal(embeddings[i]) if embeddings else None,
                        },
                    )
        except self._sa.exc.SQLAlchemyError as exc:
            raise UpstreamUnavailable(f"vector store write failed: {exc}", upstream="vector_store") from exc
        return str(doc_id)
