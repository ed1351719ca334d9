# answerdesk/runtime/embeddings.py
"""
Embedding provider adapter.

``get_embed_fn`` builds the ``EmbedFn`` used twice in the system: once per
request for the customer question, and in bulk during ingestion for page
chunks. Vectors come back unit-length so cosine and dot product agree.
"""
from __future__ import annotations

import math
from typing import Callable, Iterator, List, Optional

import openai

from answerdesk.runtime.errors import UpstreamUnavailable

# Per-request input cap for the embeddings endpoint (Azure enforces a token limit).
MAX_INPUTS_PER_CALL = 100

EmbedFn = Callable[[List[str]], List[List[float]]]


def _unit(vec: List[float]) -> List[float]:
    length = math.sqrt(sum(x * x for x in vec))
    return vec if length < 1e-9 else [x / length for x in vec]


def _batches(items: List[str], size: int) -> Iterator[List[str]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def get_embed_fn(
    model: str = "text-embedding-3-small",
    batch_size: int = MAX_INPUTS_PER_CALL,
    dimensions: Optional[int] = None,
) -> EmbedFn:
    """
    Return ``embed_fn(texts) -> vectors`` bound to one embedding model.

    ``dimensions`` is forwarded for models that support shortening
    (text-embedding-3-*). Missing credentials and any OpenAI API error are
    raised as ``UpstreamUnavailable(upstream="embedding")``.
    """
    from answerdesk.openai_client import get_client

    extra = {"dimensions": dimensions} if dimensions else {}

    def embed_fn(texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        client = get_client()

        out: List[List[float]] = []
        for batch in _batches(texts, batch_size):
            try:
                response = client.embeddings.create(input=batch, model=model, **extra)
            except openai.OpenAIError as exc:
                raise UpstreamUnavailable(f"embedding call failed: {exc}", upstream="embedding") from exc
            out.extend(_unit(list(item.embedding)) for item in response.data)
        return out

    return embed_fn


def embed_query(embed_fn: EmbedFn, text: str, expected_dim: Optional[int] = None) -> List[float]:
    """Embed one query string; an empty or wrongly-sized vector is an upstream failure."""
    vectors = embed_fn([text])
    if not vectors or not vectors[0]:
        raise UpstreamUnavailable("embedding provider returned no vector", upstream="embedding")
    vec = list(vectors[0])
    if expected_dim and len(vec) != expected_dim:
        raise UpstreamUnavailable(
            f"embedding has {len(vec)} dimensions, expected {expected_dim}", upstream="embedding"
        )
    return vec
