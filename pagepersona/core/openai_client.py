"""Async OpenAI client for chat completions (api_key from config)."""
from typing import Any, Optional

from openai import AsyncOpenAI

from pagepersona.core.config import settings

_openai_client: Any = None


def get_openai_client(api_key: Optional[str] = None) -> AsyncOpenAI:
    """Return a singleton AsyncOpenAI client configured with api_key from settings. Used by the transformer for the model-call stage.
    Why available: Single place to get the OpenAI client so every transformation shares one connection pool and config."""
    global _openai_client
    if _openai_client is None:
        _openai_client = AsyncOpenAI(api_key=api_key or settings.openai_api_key)
    return _openai_client
