# answerdesk/runtime/errors.py
"""
Error kinds raised by the answer pipeline.

InvalidInput        -> caller error (HTTP 400), raised before any upstream call
UpstreamUnavailable -> embedding / vector-store failure (HTTP 502 or soft miss)
MalformedCandidate  -> only used inside the normalizer, never escapes it
"""
from __future__ import annotations


class AnswerDeskError(Exception):
    pass


class InvalidInput(AnswerDeskError):
    pass


class UpstreamUnavailable(AnswerDeskError):
    def __init__(self, message: str, upstream: str = "unknown") -> None:
        super().__init__(message)
        self.upstream = upstream  # "embedding" | "vector_store"


class MalformedCandidate(AnswerDeskError):
    pass
