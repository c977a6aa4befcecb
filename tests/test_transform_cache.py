"""Unit tests for the transformation result cache."""
import base64

import pytest

from pagepersona.cache import ResultCache, Source
from pagepersona.store import MemoryStore, SharedStore


def _b64(s: str) -> str:
    return base64.b64encode(s.encode("utf-8")).decode("ascii")


@pytest.fixture
def cache(clock):
    return ResultCache(MemoryStore(clock=clock), ttl_seconds=3600)


def test_url_key_layout(cache):
    assert cache.key_for(Source.url("https://example.com"), "robot") == f"transform:robot:{_b64('https://example.com')}"


def test_text_key_uses_bounded_prefix(cache):
    text = "x" * 500
    assert cache.key_for(Source.text(text), "eli5") == f"transform:text:eli5:{_b64('x' * 100)}"


def test_texts_sharing_prefix_share_key(cache):
    prefix = "A" * 100
    assert cache.key_for(Source.text(prefix + " ending one"), "robot") == cache.key_for(Source.text(prefix + " ending two"), "robot")


def test_variant_suffix(cache):
    base = cache.key_for(Source.url("https://example.com"), "robot")
    assert cache.key_for(Source.url("https://example.com"), "robot", "abc123") == base + ":abc123"


@pytest.mark.asyncio
async def test_set_get_and_overwrite(cache):
    src = Source.url("https://example.com")
    assert await cache.get(src, "robot") is None
    key = await cache.set(src, "robot", {"transformed_content": "one"})
    assert key == cache.key_for(src, "robot")
    await cache.set(src, "robot", {"transformed_content": "two"})
    assert await cache.get(src, "robot") == {"transformed_content": "two"}
    assert await cache.get(src, "eli5") is None


@pytest.mark.asyncio
async def test_entries_expire(cache, clock):
    src = Source.text("hello world")
    await cache.set(src, "robot", {"ok": True})
    clock.advance(3600)
    assert await cache.get(src, "robot") is None


@pytest.mark.asyncio
async def test_invalidate(cache):
    src = Source.url("https://example.com")
    await cache.set(src, "robot", {"ok": True})
    assert await cache.invalidate(src, "robot")
    assert await cache.get(src, "robot") is None


@pytest.mark.asyncio
async def test_corrupt_entry_is_a_miss(cache):
    src = Source.url("https://example.com")
    await cache.store.setex(cache.key_for(src, "robot"), 60, "not-json{")
    assert await cache.get(src, "robot") is None


@pytest.mark.asyncio
async def test_store_errors_are_misses():
    cache = ResultCache(SharedStore(disabled=True))
    src = Source.url("https://example.com")
    assert await cache.get(src, "robot") is None
    assert await cache.set(src, "robot", {"ok": True}) is None
    assert await cache.invalidate(src, "robot") is False
