"""
Result cache for finished transformations.

Keys:
  transform:<persona>:<base64(url)>                  URL sources
  transform:text:<persona>:<base64(text[:sample])>   text sources, bounded prefix only

Two long texts sharing the same prefix map to the same entry. Caching is an
optimization: every store or decode error is logged and treated as a miss.
"""
import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pagepersona.store import KeyValueStore, StoreError

logger = logging.getLogger(__name__)

DEFAULT_TEXT_SAMPLE_CHARS = 100


@dataclass(frozen=True)
class Source:
    """Semantic identity of what is being transformed: a URL or a raw text body."""

    kind: str  # "url" | "text"
    value: str

    @classmethod
    def url(cls, value: str) -> "Source":
        return cls("url", value)

    @classmethod
    def text(cls, value: str) -> "Source":
        return cls("text", value)

    @property
    def is_text(self) -> bool:
        return self.kind == "text"


def _b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


class ResultCache:
    """Fixed-TTL cache of transformation artifacts keyed by (source, persona[, variant])."""

    def __init__(self, store: KeyValueStore, *, ttl_seconds: int = 3600, text_sample_chars: int = DEFAULT_TEXT_SAMPLE_CHARS):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.text_sample_chars = text_sample_chars

    def key_for(self, source: Source, persona: str, variant: Optional[str] = None) -> str:
        if source.is_text:
            key = f"transform:text:{persona}:{_b64(source.value[: self.text_sample_chars])}"
        else:
            key = f"transform:{persona}:{_b64(source.value)}"
        return f"{key}:{variant}" if variant else key

    async def get(self, source: Source, persona: str, variant: Optional[str] = None) -> Optional[Dict[str, Any]]:
        key = self.key_for(source, persona, variant)
        try:
            raw = await self.store.get(key)
        except StoreError:
            return None
        if raw is None:
            logger.info("cache_miss", extra={"persona": persona, "kind": source.kind})
            return None
        try:
            artifact = json.loads(raw)
        except ValueError:
            logger.error("cache_entry_unreadable", extra={"key": key})
            return None
        logger.info("cache_hit", extra={"persona": persona, "kind": source.kind})
        return artifact

    async def set(self, source: Source, persona: str, artifact: Any, variant: Optional[str] = None) -> Optional[str]:
        """Write the artifact wholesale with the cache TTL. Returns the key on success, None if the write failed."""
        key = self.key_for(source, persona, variant)
        try:
            payload = json.dumps(artifact)
        except (TypeError, ValueError):
            logger.error("cache_entry_not_serializable", extra={"key": key})
            return None
        try:
            await self.store.setex(key, self.ttl_seconds, payload)
        except StoreError:
            logger.error("cache_write_failed", extra={"key": key})
            return None
        logger.info("cache_set", extra={"persona": persona, "kind": source.kind, "ttl": self.ttl_seconds})
        return key

    async def invalidate(self, source: Source, persona: str, variant: Optional[str] = None) -> bool:
        key = self.key_for(source, persona, variant)
        try:
            await self.store.delete(key)
        except StoreError:
            logger.error("cache_invalidate_failed", extra={"key": key})
            return False
        logger.info("cache_invalidated", extra={"persona": persona, "kind": source.kind})
        return True
