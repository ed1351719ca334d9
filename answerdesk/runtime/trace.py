# answerdesk/runtime/trace.py
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


def _epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class StageEvent:
    stage: str
    offset_ms: int  # since the request started
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Trace:
    """Per-request record of pipeline stages (embedded, faq_retrieved, selected, ...)."""

    request_id: str
    started_ts_ms: int
    query: str
    kind: str = "search"  # "search" | "answer"
    events: List[StageEvent] = field(default_factory=list)

    @classmethod
    def start(cls, query: str, kind: str = "search", request_id: Optional[str] = None) -> "Trace":
        return cls(request_id=request_id or str(uuid.uuid4()), started_ts_ms=_epoch_ms(), query=query, kind=kind)

    def elapsed_ms(self) -> int:
        return max(0, _epoch_ms() - self.started_ts_ms)

    def add(self, stage: str, **data: Any) -> None:
        self.events.append(StageEvent(stage=stage, offset_ms=self.elapsed_ms(), data=data))

    def stages(self) -> List[str]:
        return [e.stage for e in self.events]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "trace",
            "request_id": self.request_id,
            "kind": self.kind,
            "started_ts_ms": self.started_ts_ms,
            "duration_ms": self.elapsed_ms(),
            "query": self.query,
            "events": [{"stage": e.stage, "offset_ms": e.offset_ms, **e.data} for e in self.events],
        }
