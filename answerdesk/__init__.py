"""answerdesk: FAQ-first, review-fallback retrieval and ranking."""

__version__ = "0.1.0"
