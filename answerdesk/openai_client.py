# answerdesk/openai_client.py
"""
Embedding client factory.

Credentials come from the environment (``.env`` is loaded on import):

    AZURE_OPENAI_ENDPOINT + AZURE_OPENAI_API_KEY (or OPENAI_API_KEY)  -> AzureOpenAI
    OPENAI_API_KEY [+ OPENAI_BASE_URL]                                -> OpenAI

OPENAI_TIMEOUT (seconds) and OPENAI_MAX_RETRIES tune both clients. Missing
credentials are an embedding-upstream failure, same as a failed call.
"""
from __future__ import annotations

import os
from typing import Union

from dotenv import load_dotenv
from openai import AzureOpenAI, OpenAI

from answerdesk.runtime.errors import UpstreamUnavailable

load_dotenv()

DEFAULT_TIMEOUT_S = 20.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_AZURE_API_VERSION = "2024-02-01"


def _env_number(name: str, default, cast):
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        return default


def get_client() -> Union[AzureOpenAI, OpenAI]:
    azure_endpoint = (os.getenv("AZURE_OPENAI_ENDPOINT") or "").strip()
    openai_key = (os.getenv("OPENAI_API_KEY") or "").strip()
    azure_key = (os.getenv("AZURE_OPENAI_API_KEY") or "").strip() or openai_key
    timeout = _env_number("OPENAI_TIMEOUT", DEFAULT_TIMEOUT_S, float)
    max_retries = _env_number("OPENAI_MAX_RETRIES", DEFAULT_MAX_RETRIES, int)

    if azure_endpoint and azure_key:
        return AzureOpenAI(
            azure_endpoint=azure_endpoint,
            api_key=azure_key,
            api_version=os.getenv("AZURE_OPENAI_API_VERSION") or DEFAULT_AZURE_API_VERSION,
            timeout=timeout,
            max_retries=max_retries,
        )
    if openai_key:
        return OpenAI(
            api_key=openai_key,
            base_url=os.getenv("OPENAI_BASE_URL") or None,
            timeout=timeout,
            max_retries=max_retries,
        )
    raise UpstreamUnavailable("no OpenAI or Azure OpenAI credentials configured", upstream="embedding")
