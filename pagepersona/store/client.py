"""
Thin async wrapper over Redis exposing only the primitives the service relies on.

Every failure (connection refused, timeout, protocol error, store disabled) is
raised as StoreError so callers can apply their own fallback.
"""
import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """The shared store could not be reached or answered with an error."""


class SharedStore:
    """Redis-backed shared store reachable by every service instance.

    The connection is created lazily on first use. After the first failure the
    client logs quietly until a command succeeds again, so an outage does not
    flood the logs with one warning per request.
    """

    def __init__(self, url: str = "redis://localhost:6379/0", *, disabled: bool = False, connect_timeout: float = 3.0):
        self._url = url
        self._disabled = disabled
        self._connect_timeout = connect_timeout
        self._client: Any = None
        self._silent = False

    @property
    def disabled(self) -> bool:
        return self._disabled

    def _get_client(self):
        if self._disabled:
            raise StoreError("shared store disabled")
        if self._client is None:
            self._client = aioredis.from_url(
                self._url,
                decode_responses=True,
                socket_connect_timeout=self._connect_timeout,
                socket_timeout=self._connect_timeout,
            )
        return self._client

    def _failed(self, op: str, exc: BaseException) -> StoreError:
        if self._silent:
            logger.debug("store_%s_failed", op, extra={"error": str(exc)})
        else:
            logger.warning("store_unavailable", extra={"op": op, "error": str(exc)})
            self._silent = True
        return StoreError(f"{op} failed: {exc}")

    def _succeeded(self) -> None:
        if self._silent:
            logger.info("store_recovered")
            self._silent = False

    async def get(self, key: str) -> Optional[str]:
        client = self._get_client()
        try:
            value = await client.get(key)
        except (RedisError, OSError) as e:
            raise self._failed("get", e) from e
        self._succeeded()
        return value

    async def set(self, key: str, value: str, *, ex: Optional[int] = None, nx: bool = False) -> bool:
        """SET key value [EX ex] [NX]. Returns False only when NX was requested and the key already existed."""
        client = self._get_client()
        try:
            result = await client.set(key, value, ex=ex, nx=nx)
        except (RedisError, OSError) as e:
            raise self._failed("set", e) from e
        self._succeeded()
        return bool(result)

    async def setex(self, key: str, seconds: int, value: str) -> None:
        client = self._get_client()
        try:
            await client.setex(key, seconds, value)
        except (RedisError, OSError) as e:
            raise self._failed("setex", e) from e
        self._succeeded()

    async def delete(self, key: str) -> None:
        client = self._get_client()
        try:
            await client.delete(key)
        except (RedisError, OSError) as e:
            raise self._failed("delete", e) from e
        self._succeeded()

    async def ping(self) -> bool:
        """Return True if the store answers; never raises."""
        try:
            client = self._get_client()
            await client.ping()
        except (StoreError, RedisError, OSError):
            return False
        self._succeeded()
        return True

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
