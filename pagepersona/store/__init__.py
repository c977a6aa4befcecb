"""Shared key-value store used by the job manager, rate limiter and result cache."""
from typing import Optional, Protocol

from pagepersona.store.client import SharedStore, StoreError
from pagepersona.store.memory import MemoryStore


class KeyValueStore(Protocol):
    """Store primitives every backend must honour: GET, SET [EX] [NX], SETEX, DEL."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, *, ex: Optional[int] = None, nx: bool = False) -> bool: ...

    async def setex(self, key: str, seconds: int, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


def build_store(url: str, *, disabled: bool = False, connect_timeout: float = 3.0) -> KeyValueStore:
    """Return the store backend for url: memory:// selects the in-process store, anything else is treated as a Redis URL."""
    if url.startswith("memory://"):
        return MemoryStore()
    return SharedStore(url, disabled=disabled, connect_timeout=connect_timeout)


__all__ = ["KeyValueStore", "MemoryStore", "SharedStore", "StoreError", "build_store"]
