"""
Caller tiers and the tiered rate limiter.

The tier is resolved by an ordered chain of sources, first answer wins:
  test override -> account membership -> account role -> x-user-tier header -> free
Quota is tracked per (caller, endpoint class, tier), so exhausting one class or
tier never affects another.
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from starlette.requests import Request
from starlette.responses import Response

from pagepersona.guardrails.rate_limit import RateLimitDecision, RateLimiter, RateLimitStore, client_ip

logger = logging.getLogger(__name__)

TIER_HEADER = "x-user-tier"


class Tier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"
    ADMIN = "admin"

    @classmethod
    def coerce(cls, value: Any) -> Optional["Tier"]:
        """Map a raw value to a Tier. Empty -> None; unrecognized -> FREE."""
        if value is None:
            return None
        if isinstance(value, Tier):
            return value
        text = str(value).strip().lower()
        if not text:
            return None
        try:
            return cls(text)
        except ValueError:
            return cls.FREE


@dataclass(frozen=True)
class TierLimit:
    max_requests: int
    window_ms: int = 60 * 1000


TIER_LIMITS: Dict[str, Dict[Tier, TierLimit]] = {
    "transform": {
        Tier.FREE: TierLimit(10),
        Tier.PREMIUM: TierLimit(100),
        Tier.ADMIN: TierLimit(1000),
    },
    "api": {
        Tier.FREE: TierLimit(50),
        Tier.PREMIUM: TierLimit(500),
        Tier.ADMIN: TierLimit(5000),
    },
}
DEFAULT_ENDPOINT_CLASS = "api"


@dataclass
class CallerContext:
    """Everything tier resolution may look at for one request."""

    ip: str = "unknown"
    test_tier: Optional[str] = None
    account: Optional[Any] = None  # mapping or object with membership / role
    headers: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_request(cls, request: Request) -> "CallerContext":
        return cls(
            ip=client_ip(request),
            test_tier=getattr(request.state, "test_tier", None),
            account=getattr(request.state, "account", None),
            headers=request.headers,
        )


def _account_field(account: Any, name: str) -> Any:
    if account is None:
        return None
    if isinstance(account, Mapping):
        return account.get(name)
    return getattr(account, name, None)


def from_test_override(ctx: CallerContext) -> Optional[Tier]:
    return Tier.coerce(ctx.test_tier)


def from_account_membership(ctx: CallerContext) -> Optional[Tier]:
    return Tier.coerce(_account_field(ctx.account, "membership"))


def from_account_role(ctx: CallerContext) -> Optional[Tier]:
    role = str(_account_field(ctx.account, "role") or "").strip().lower()
    if role == "admin":
        return Tier.ADMIN
    if role == "premium":
        return Tier.PREMIUM
    return None


def from_tier_header(ctx: CallerContext) -> Optional[Tier]:
    return Tier.coerce(ctx.headers.get(TIER_HEADER))


TierSource = Callable[[CallerContext], Optional[Tier]]


class TierResolver:
    """Ordered chain of tier sources fixed at construction; the first non-None answer wins."""

    def __init__(self, sources: Sequence[TierSource], default: Tier = Tier.FREE):
        self.sources = tuple(sources)
        self.default = default

    def __call__(self, ctx: CallerContext) -> Tier:
        for source in self.sources:
            tier = source(ctx)
            if tier is not None:
                return tier
        return self.default


def build_tier_resolver(header_enabled: bool = True) -> TierResolver:
    sources = [from_test_override, from_account_membership, from_account_role]
    if header_enabled:
        sources.append(from_tier_header)
    return TierResolver(sources)


resolve_tier = build_tier_resolver()


class TieredRateLimiter:
    """Rate limiter whose quota row is chosen per request from (endpoint class, resolved tier)."""

    def __init__(
        self,
        endpoint_class: str,
        resolver: Callable[[CallerContext], Tier] = resolve_tier,
        *,
        store: Optional[RateLimitStore] = None,
        limits: Mapping[str, Mapping[Tier, TierLimit]] = TIER_LIMITS,
        clock: Callable[[], float] = time.time,
    ):
        if endpoint_class not in limits:
            logger.warning("unknown_endpoint_class", extra={"endpoint_class": endpoint_class})
        self.endpoint_class = endpoint_class
        self.resolver = resolver
        row = limits.get(endpoint_class) or limits[DEFAULT_ENDPOINT_CLASS]
        self.limiters: Dict[Tier, RateLimiter] = {}
        for tier in Tier:
            limit = row.get(tier) or row[Tier.FREE]
            self.limiters[tier] = RateLimiter(limit.max_requests, limit.window_ms, store=store, clock=clock)

    def key_for(self, ctx: CallerContext, tier: Tier) -> str:
        return f"{ctx.ip}-{self.endpoint_class}-{tier.value}"

    async def admit(self, ctx: CallerContext, response: Optional[Response] = None) -> RateLimitDecision:
        tier = self.resolver(ctx)
        return await self.limiters[tier].enforce(self.key_for(ctx, tier), response)

    async def check(self, request: Request, response: Response) -> RateLimitDecision:
        return await self.admit(CallerContext.from_request(request), response)


def create_tiered_limiter(
    endpoint_class: str,
    resolver: Callable[[CallerContext], Tier] = resolve_tier,
    *,
    store: Optional[RateLimitStore] = None,
    limits: Mapping[str, Mapping[Tier, TierLimit]] = TIER_LIMITS,
    clock: Callable[[], float] = time.time,
) -> TieredRateLimiter:
    return TieredRateLimiter(endpoint_class, resolver, store=store, limits=limits, clock=clock)
