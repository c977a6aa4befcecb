"""In-process store with the same primitives as the shared store: lazy TTL expiry, injectable clock."""
import time
from typing import Callable, Dict, Optional, Tuple


class MemoryStore:
    """Single-process key-value store. Not shared across instances.

    Operations contain no await points, so SET NX is atomic within one event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, *, ex: Optional[int] = None, nx: bool = False) -> bool:
        if nx and self._live(key) is not None:
            return False
        expires_at = self._clock() + ex if ex else None
        self._data[key] = (value, expires_at)
        return True

    async def setex(self, key: str, seconds: int, value: str) -> None:
        self._data[key] = (value, self._clock() + seconds)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._data.clear()

    def ttl(self, key: str) -> Optional[float]:
        """Seconds until key expires, None if absent or without expiry."""
        if self._live(key) is None:
            return None
        expires_at = self._data[key][1]
        return None if expires_at is None else expires_at - self._clock()
