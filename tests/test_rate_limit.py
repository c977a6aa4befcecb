"""Unit tests for the fixed-window limiter and its counter stores."""
import json

import pytest
from starlette.requests import Request

from pagepersona.guardrails.rate_limit import (
    FallbackRateLimitStore,
    MemoryRateLimitStore,
    RateLimitDecision,
    RateLimitExceeded,
    RateLimiter,
    SharedRateLimitStore,
    client_ip,
)
from pagepersona.store import MemoryStore, SharedStore


def _request(headers=None, client=("10.0.0.1", 1234)) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/transform", "headers": raw, "client": client})


@pytest.mark.asyncio
async def test_single_request_window(clock):
    limiter = RateLimiter(1, 60_000, clock=clock)

    first = await limiter.enforce("ip-transform")
    assert first.allowed
    assert first.remaining == 0

    with pytest.raises(RateLimitExceeded) as exc:
        await limiter.enforce("ip-transform")
    decision = exc.value.decision
    assert not decision.allowed
    assert 1 <= decision.retry_after <= 60
    assert decision.headers()["Retry-After"] == str(decision.retry_after)

    clock.advance(61)
    assert (await limiter.enforce("ip-transform")).allowed


@pytest.mark.asyncio
async def test_remaining_counts_down_within_window(clock):
    limiter = RateLimiter(3, 60_000, clock=clock)
    remaining = [(await limiter.hit("k")).remaining for _ in range(3)]
    assert remaining == [2, 1, 0]
    assert not (await limiter.hit("k")).allowed


@pytest.mark.asyncio
async def test_refusals_do_not_consume_quota(clock):
    store = MemoryRateLimitStore()
    limiter = RateLimiter(2, 60_000, store=store, clock=clock)
    for _ in range(5):
        await limiter.hit("k")
    assert (await store.get("k")).count == 2


@pytest.mark.asyncio
async def test_keys_are_independent(clock):
    limiter = RateLimiter(1, 60_000, clock=clock)
    assert (await limiter.hit("a")).allowed
    assert (await limiter.hit("b")).allowed
    assert not (await limiter.hit("a")).allowed


@pytest.mark.asyncio
async def test_retry_after_is_at_least_one_second(clock):
    limiter = RateLimiter(1, 1_000, clock=clock)
    await limiter.hit("k")
    clock.advance(0.9999)
    decision = await limiter.hit("k")
    assert not decision.allowed
    assert decision.retry_after == 1


@pytest.mark.asyncio
async def test_shared_counters_are_json_with_window_ttl(clock):
    kv = MemoryStore(clock=clock)
    limiter = RateLimiter(5, 60_000, store=SharedRateLimitStore(kv), clock=clock)
    await limiter.hit("10.0.0.1-api-free")
    await limiter.hit("10.0.0.1-api-free")

    raw = await kv.get("rate_limit:10.0.0.1-api-free")
    assert json.loads(raw)["count"] == 2
    assert kv.ttl("rate_limit:10.0.0.1-api-free") == pytest.approx(60)


@pytest.mark.asyncio
async def test_two_limiters_on_one_shared_store_share_counts(clock):
    shared = SharedRateLimitStore(MemoryStore(clock=clock))
    a = RateLimiter(2, 60_000, store=shared, clock=clock)
    b = RateLimiter(2, 60_000, store=shared, clock=clock)
    await a.hit("k")
    await b.hit("k")
    assert not (await a.hit("k")).allowed


@pytest.mark.asyncio
async def test_fallback_counts_locally_when_shared_store_down(clock):
    store = FallbackRateLimitStore(SharedRateLimitStore(SharedStore(disabled=True)))
    limiter = RateLimiter(1, 60_000, store=store, clock=clock)
    assert (await limiter.hit("k")).allowed
    assert store.degraded
    assert not (await limiter.hit("k")).allowed
    assert len(store.fallback) == 1


@pytest.mark.asyncio
async def test_limiter_fault_admits_request(clock):
    class Broken:
        async def get(self, key):
            raise RuntimeError("broken")

        async def increment_window(self, key, window_ms, now_ms):
            raise RuntimeError("broken")

    limiter = RateLimiter(1, 60_000, store=Broken(), clock=clock)
    assert (await limiter.enforce("k")).allowed
    assert (await limiter.enforce("k")).allowed


def test_headers_only_carry_retry_after_when_refused():
    ok = RateLimitDecision(allowed=True, limit=10, remaining=9)
    refused = RateLimitDecision(allowed=False, limit=10, remaining=0, retry_after=42)
    assert ok.headers() == {"X-RateLimit-Limit": "10", "X-RateLimit-Remaining": "9"}
    assert refused.headers()["Retry-After"] == "42"


def test_client_ip_prefers_first_forwarded_hop():
    assert client_ip(_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.2"})) == "203.0.113.7"
    assert client_ip(_request()) == "10.0.0.1"
    assert client_ip(_request(client=None)) == "unknown"


def test_invalid_limits_rejected():
    with pytest.raises(ValueError):
        RateLimiter(0, 60_000)
