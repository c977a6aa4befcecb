"""
The compute pipeline wrapped by the job layer: fetch -> clean -> model call.

Returns a JSON-serializable artifact so it can be stored on the job record and
in the result cache unchanged.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from openai import APIConnectionError, APITimeoutError, InternalServerError, OpenAIError, RateLimitError

from pagepersona.cache import Source
from pagepersona.core.config import Settings, settings as default_settings
from pagepersona.core.openai_client import get_openai_client
from pagepersona.guardrails.errors import ErrorCode, TransformError
from pagepersona.jobs.models import JobStage
from pagepersona.transform.cleaner import clean_text_for_llm
from pagepersona.transform.fetcher import fetch_page
from pagepersona.transform.personas import Persona, get_persona
from pagepersona.transform.prompt_builder import build_messages
from pagepersona.utils.retry import with_retry

logger = logging.getLogger(__name__)

Reporter = Callable[[JobStage, int], Awaitable[None]]
CONTENT_PREVIEW_CHARS = 500
RETRYABLE = (APIConnectionError, APITimeoutError, RateLimitError, InternalServerError)


async def _no_progress(stage: JobStage, progress: int) -> None:
    return None


def require_persona(persona_id: str) -> Persona:
    persona = get_persona(persona_id)
    if persona is None:
        raise TransformError(ErrorCode.PERSONA_NOT_FOUND, f"Unknown persona: {persona_id}")
    return persona


class ContentTransformer:
    """Turns a Source into persona-styled text. Stateless apart from settings and the OpenAI client."""

    def __init__(self, config: Optional[Settings] = None, client: Any = None):
        self.config = config or default_settings
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if not self.config.openai_api_key:
                raise TransformError(ErrorCode.SERVICE_UNAVAILABLE, "Our AI service is currently unavailable. Please try again later.")
            self._client = get_openai_client(self.config.openai_api_key)
        return self._client

    async def transform(self, source: Source, persona_id: str, report: Reporter = _no_progress) -> Dict[str, Any]:
        persona = require_persona(persona_id)

        title, url = "", ""
        if source.is_text:
            raw = source.value
        else:
            await report(JobStage.FETCH, 10)
            page = await fetch_page(
                source.value,
                timeout=self.config.fetch_timeout_seconds,
                max_bytes=self.config.max_page_kb * 1024,
            )
            raw, title, url = page.html, page.title, page.url

        await report(JobStage.CLEAN, 30)
        cleaned = clean_text_for_llm(raw, max_chars=self.config.max_clean_chars)
        if not cleaned.text:
            raise TransformError(ErrorCode.SCRAPING_FAILED, "No readable content was found to transform.")

        await report(JobStage.MODEL_CALL, 60)
        transformed, usage = await self._call_model(persona, cleaned.text, title)

        return {
            "original_content": {
                "title": title,
                "url": url,
                "content": cleaned.text[:CONTENT_PREVIEW_CHARS],
                "word_count": len(cleaned.text.split()),
            },
            "transformed_content": transformed,
            "persona": persona.public(),
            "usage": usage,
        }

    async def _call_model(self, persona: Persona, content: str, title: str) -> tuple[str, Optional[Dict[str, int]]]:
        messages = build_messages(persona, content, title, self.config.prompt_version)
        client = self.client

        async def _create():
            return await client.chat.completions.create(
                model=self.config.chat_model,
                messages=messages,
                temperature=0.7,
            )

        try:
            resp = await with_retry(_create, retries=2, retry_on=RETRYABLE)
        except OpenAIError as e:
            logger.error("model_call_failed", extra={"persona": persona.id, "error": str(e)})
            raise TransformError(ErrorCode.TRANSFORMATION_FAILED, "The AI transformation failed. Please try again later.") from e

        text = (resp.choices[0].message.content or "").strip()
        if not text:
            raise TransformError(ErrorCode.TRANSFORMATION_FAILED, "The AI returned an empty response.")
        usage = None
        if getattr(resp, "usage", None) is not None:
            usage = {
                "prompt_tokens": resp.usage.prompt_tokens,
                "completion_tokens": resp.usage.completion_tokens,
                "total_tokens": resp.usage.total_tokens,
            }
        return text, usage
