# answerdesk/runtime/config.py
"""
RankingConfig: the read-only tunables shared by every request.

Built once at process start (env, YAML or defaults) and passed explicitly
into each ranking call. Nothing in the request path mutates it.

Environment variables use the ``ANSWERDESK_`` prefix plus the upper-cased
field name, e.g. ``ANSWERDESK_FAQ_MIN_SIMILARITY=0.6``. Tuple fields take a
comma-separated list.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv

ENV_PREFIX = "ANSWERDESK_"

DEFAULT_RESCUE_KEYWORDS: Tuple[str, ...] = (
    "order",
    "delivery",
    "when will i get",
    "where is my order",
    "track my order",
    "track",
    "tracking",
    "status",
    "pickup",
    "courier",
    "delayed",
)

DEFAULT_REVIEW_DOMAIN_MARKERS: Tuple[str, ...] = (
    "google.com/maps",
    "maps.google.",
    "maps.app.goo.gl",
    "g.page",
    "google-review",
)


@dataclass(frozen=True)
class RankingConfig:
    """Tunable thresholds for ranking and answer selection."""

    # FAQ path
    faq_min_similarity: float = 0.55  # Primary-path inclusion threshold (inclusive)
    max_faq_return: int = 3
    rescue_keywords: Tuple[str, ...] = DEFAULT_RESCUE_KEYWORDS

    # Additive boosts
    faq_boost: float = 0.25
    review_boost: float = 0.0
    intent_boost: float = 0.0  # Added when query and passage share an intent keyword

    # Review path
    max_review_return: int = 3
    review_position_bonus: float = 0.5  # Must stay below 1 (one lexical hit)
    review_scan_limit: int = 600

    # Bucket classification
    review_domain_markers: Tuple[str, ...] = DEFAULT_REVIEW_DOMAIN_MARKERS

    # Query shaping
    default_top_k: int = 14
    max_k: int = 40

    # Single best answer
    answer_min_score: float = 0.55
    answer_pool_size: int = 30

    # Embeddings
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = 1536

    # Upstream failure policy: soft "none" result unless the caller asked for debug
    fail_soft: bool = True

    # User-facing strings
    review_link_url: Optional[str] = None
    not_found_message: str = "I couldn't find this in FAQs or reviews."
    no_reviews_message: str = "I couldn't find any reviews about this."
    answer_fallback_message: str = "I couldn't find this in our FAQs right now."

    def boost_for(self, bucket: str) -> float:
        if bucket == "faq":
            return self.faq_boost
        if bucket == "review":
            return self.review_boost
        return 0.0

    def clamp_top_k(self, top_k: Any) -> int:
        try:
            k = int(top_k)
        except (TypeError, ValueError):
            k = self.default_top_k
        return min(max(k, 1), self.max_k)

    def validate(self) -> "RankingConfig":
        errors = []
        if self.max_faq_return < 1:
            errors.append("max_faq_return must be >= 1")
        if self.max_review_return < 1:
            errors.append("max_review_return must be >= 1")
        if not 0.0 <= self.review_position_bonus < 1.0:
            errors.append("review_position_bonus must be in [0, 1)")
        if self.max_k < 1:
            errors.append("max_k must be >= 1")
        if self.embedding_dim < 1:
            errors.append("embedding_dim must be >= 1")
        if self.review_scan_limit < 1:
            errors.append("review_scan_limit must be >= 1")
        if errors:
            raise ValueError("Invalid ranking config:\n" + "\n".join(errors))
        return self

    # ------------------------------------------------------------------
    # Loaders
    # ------------------------------------------------------------------
    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RankingConfig":
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ValueError(f"Unknown ranking config keys: {unknown}")
        base = cls()
        values = {k: _coerce(getattr(base, k), v) for k, v in data.items()}
        return replace(base, **values).validate()

    @classmethod
    def from_yaml(cls, path: str | Path) -> "RankingConfig":
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Ranking config at {path} must be a YAML mapping")
        return cls.from_mapping(raw)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RankingConfig":
        if environ is None:
            load_dotenv()
            environ = os.environ
        data: Dict[str, Any] = {}
        for f in fields(cls):
            val = environ.get(ENV_PREFIX + f.name.upper())
            if val is not None and val != "":
                data[f.name] = val
        cfg_file = environ.get(ENV_PREFIX + "CONFIG")
        if cfg_file:
            file_cfg = cls.from_yaml(cfg_file)
            return replace(file_cfg, **{k: _coerce(getattr(file_cfg, k), v) for k, v in data.items()}).validate()
        return cls.from_mapping(data)


def _coerce(default: Any, value: Any) -> Any:
    """Coerce an env/YAML value to the type of the field's default."""
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    if isinstance(default, tuple):
        if isinstance(value, str):
            return tuple(p.strip() for p in value.split(",") if p.strip())
        return tuple(str(v) for v in value)
    if value is None:
        return None
    return str(value)
