"""
Fixed-window rate limiting behind a pluggable counter store.

A counter lives for one window: the first request opens it with count 1, later
requests increment it until max_requests, after which requests are refused
until reset_time passes and a fresh window starts. Nothing carries over
between windows.
"""
import json
import logging
import math
import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Optional, Protocol

from starlette.requests import Request
from starlette.responses import Response

from pagepersona.store import KeyValueStore, StoreError

logger = logging.getLogger(__name__)

KeyFn = Callable[[Request], str]


@dataclass
class RateLimitCounter:
    """Consumption for one key in one window. Times are epoch milliseconds."""

    count: int
    window_start: float
    reset_time: float

    def expired(self, now_ms: float) -> bool:
        return now_ms > self.reset_time


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0  # seconds, only meaningful when refused
    reset_time: float = 0.0

    def headers(self) -> Dict[str, str]:
        out = {"X-RateLimit-Limit": str(self.limit), "X-RateLimit-Remaining": str(self.remaining)}
        if not self.allowed:
            out["Retry-After"] = str(self.retry_after)
        return out


class RateLimitExceeded(Exception):
    """Raised by RateLimiter.check when the caller is over quota; rendered as HTTP 429 by the app."""

    def __init__(self, decision: RateLimitDecision, message: str = "Rate limit exceeded"):
        super().__init__(message)
        self.decision = decision
        self.message = message


# -------------------------
# Counter stores
# -------------------------


class RateLimitStore(Protocol):
    async def get(self, key: str) -> Optional[RateLimitCounter]: ...

    async def increment_window(self, key: str, window_ms: int, now_ms: float) -> RateLimitCounter: ...


def _next_counter(current: Optional[RateLimitCounter], window_ms: int, now_ms: float) -> RateLimitCounter:
    if current is None or current.expired(now_ms):
        return RateLimitCounter(count=1, window_start=now_ms, reset_time=now_ms + window_ms)
    return RateLimitCounter(count=current.count + 1, window_start=current.window_start, reset_time=current.reset_time)


class MemoryRateLimitStore:
    """Process-local counters. Counts are not shared across instances."""

    def __init__(self, purge_interval_ms: int = 5 * 60 * 1000):
        self._counters: Dict[str, RateLimitCounter] = {}
        self._purge_interval_ms = purge_interval_ms
        self._last_purge = 0.0

    def _purge(self, now_ms: float) -> None:
        if now_ms - self._last_purge < self._purge_interval_ms:
            return
        self._last_purge = now_ms
        for key in [k for k, c in self._counters.items() if c.expired(now_ms)]:
            del self._counters[key]

    async def get(self, key: str) -> Optional[RateLimitCounter]:
        return self._counters.get(key)

    async def increment_window(self, key: str, window_ms: int, now_ms: float) -> RateLimitCounter:
        self._purge(now_ms)
        counter = _next_counter(self._counters.get(key), window_ms, now_ms)
        self._counters[key] = counter
        return counter

    def __len__(self) -> int:
        return len(self._counters)


class SharedRateLimitStore:
    """Counters kept as JSON in the shared store, expiring with their window. Raises StoreError when the store is down."""

    prefix = "rate_limit:"

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def get(self, key: str) -> Optional[RateLimitCounter]:
        raw = await self.store.get(self.prefix + key)
        if raw is None:
            return None
        try:
            return RateLimitCounter(**json.loads(raw))
        except (ValueError, TypeError):
            logger.warning("rate_limit_counter_unreadable", extra={"key": key})
            return None

    async def increment_window(self, key: str, window_ms: int, now_ms: float) -> RateLimitCounter:
        counter = _next_counter(await self.get(key), window_ms, now_ms)
        ttl = max(1, math.ceil((counter.reset_time - now_ms) / 1000))
        await self.store.setex(self.prefix + key, ttl, json.dumps(asdict(counter)))
        return counter


class FallbackRateLimitStore:
    """Use the primary (shared) store; on StoreError count in the process-local fallback instead of blocking traffic."""

    def __init__(self, primary: RateLimitStore, fallback: Optional[MemoryRateLimitStore] = None):
        self.primary = primary
        self.fallback = fallback or MemoryRateLimitStore()
        self.degraded = False

    def _degrade(self) -> None:
        if not self.degraded:
            logger.warning("rate_limit_fallback_to_memory")
            self.degraded = True

    def _recover(self) -> None:
        if self.degraded:
            logger.info("rate_limit_shared_store_recovered")
            self.degraded = False

    async def get(self, key: str) -> Optional[RateLimitCounter]:
        try:
            counter = await self.primary.get(key)
        except StoreError:
            self._degrade()
            return await self.fallback.get(key)
        self._recover()
        return counter

    async def increment_window(self, key: str, window_ms: int, now_ms: float) -> RateLimitCounter:
        try:
            counter = await self.primary.increment_window(key, window_ms, now_ms)
        except StoreError:
            self._degrade()
            return await self.fallback.increment_window(key, window_ms, now_ms)
        self._recover()
        return counter


# -------------------------
# Limiter
# -------------------------


def client_ip(request: Request) -> str:
    """Extract client IP, respecting X-Forwarded-For behind a proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def default_key(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None) or request.url.path
    return f"{client_ip(request)}-{path}"


class RateLimiter:
    """Fixed-window limiter: max_requests per window_ms per key. Used as a FastAPI dependency via check()."""

    def __init__(
        self,
        max_requests: int,
        window_ms: int,
        key_fn: Optional[KeyFn] = None,
        *,
        store: Optional[RateLimitStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        if max_requests <= 0 or window_ms <= 0:
            raise ValueError("max_requests and window_ms must be > 0")
        self.max_requests = max_requests
        self.window_ms = window_ms
        self.key_fn = key_fn or default_key
        self.store = store if store is not None else MemoryRateLimitStore()
        self.clock = clock

    async def hit(self, key: str) -> RateLimitDecision:
        """Count one request against key and return the admission decision. Refusals do not consume quota."""
        now_ms = self.clock() * 1000
        counter = await self.store.get(key)
        if counter is not None and not counter.expired(now_ms) and counter.count >= self.max_requests:
            retry_after = max(1, math.ceil((counter.reset_time - now_ms) / 1000))
            return RateLimitDecision(
                allowed=False,
                limit=self.max_requests,
                remaining=0,
                retry_after=retry_after,
                reset_time=counter.reset_time,
            )

        counter = await self.store.increment_window(key, self.window_ms, now_ms)
        return RateLimitDecision(
            allowed=True,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - counter.count),
            reset_time=counter.reset_time,
        )

    async def enforce(self, key: str, response: Optional[Response] = None) -> RateLimitDecision:
        """Admit (setting limit headers on response) or raise RateLimitExceeded. Limiter faults admit the request."""
        try:
            decision = await self.hit(key)
        except Exception:
            logger.error("rate_limit_check_failed", exc_info=True, extra={"key": key})
            return RateLimitDecision(allowed=True, limit=self.max_requests, remaining=self.max_requests)

        if not decision.allowed:
            logger.warning(
                "rate_limit_exceeded",
                extra={"key": key, "limit": decision.limit, "retry_after": decision.retry_after},
            )
            raise RateLimitExceeded(decision)

        if response is not None:
            response.headers.update(decision.headers())
        logger.debug("rate_limit_passed", extra={"key": key, "remaining": decision.remaining})
        return decision

    async def check(self, request: Request, response: Response) -> RateLimitDecision:
        return await self.enforce(self.key_fn(request), response)


def create_limiter(
    max_requests: int,
    window_ms: int,
    key_fn: Optional[KeyFn] = None,
    *,
    store: Optional[RateLimitStore] = None,
    clock: Callable[[], float] = time.time,
) -> RateLimiter:
    """Build a gate usable in front of any handler: Depends(create_limiter(...).check)."""
    return RateLimiter(max_requests, window_ms, key_fn, store=store, clock=clock)
