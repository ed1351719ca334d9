# answerdesk/runtime/audit_writer.py
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from answerdesk.runtime.trace import Trace


class JsonlAuditWriter:
    """Append-only JSONL sink for request traces and widget query logs."""

    def __init__(self, audit_dir: str = ".answerdesk/audit", filename: str = "queries.jsonl"):
        self.audit_dir = Path(audit_dir)
        self.path = self.audit_dir / filename
        self.audit_dir.mkdir(parents=True, exist_ok=True)

    def _append(self, record: Dict[str, Any]) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")

    def write(self, trace: Trace) -> None:
        self._append(trace.to_dict())

    def write_query_log(self, entry: Dict[str, Any]) -> str:
        """Record one widget query log entry; returns its id."""
        log_id = str(uuid.uuid4())
        self._append(
            {
                "type": "query_log",
                "id": log_id,
                "asked_at": datetime.now(timezone.utc).isoformat(),
                **entry,
            }
        )
        return log_id
