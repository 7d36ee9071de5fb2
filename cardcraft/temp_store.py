from __future__ import annotations

import secrets
import threading
import time
from typing import Any, Callable, Dict, Generic, Optional, Tuple, TypeVar

from . import config


V = TypeVar("V")


class TokenNotFound(KeyError):
    pass


def new_token() -> str:
    return secrets.token_urlsafe(16)


class TTLStore(Generic[V]):
    """
    In-process key/value store whose entries expire `ttl` seconds after they
    were put. Pass an instance to whatever needs it; swap for a shared cache
    when running more than one process.
    """

    def __init__(self, ttl: Optional[float] = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = config.TEMP_PROJECT_TTL_SECONDS if ttl is None else float(ttl)
        self._clock = clock
        self._items: Dict[str, Tuple[float, V]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, data: V) -> None:
        with self._lock:
            self._items[key] = (self._clock() + self.ttl, data)

    def get(self, key: str) -> V:
        with self._lock:
            return self._live(key)

    def take(self, key: str) -> V:
        """Return the entry and remove it, so a token can be redeemed once."""
        with self._lock:
            data = self._live(key)
            del self._items[key]
            return data

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [key for key, (expires, _) in self._items.items() if expires <= now]
            for key in expired:
                del self._items[key]
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for expires, _ in self._items.values() if expires > now)

    def _live(self, key: str) -> V:
        # caller holds the lock
        entry = self._items.get(key)
        if entry is None:
            raise TokenNotFound(key)
        expires, data = entry
        if expires <= self._clock():
            del self._items[key]
            raise TokenNotFound(key)
        return data


def store_new(store: TTLStore[Any], data: Any) -> str:
    token = new_token()
    store.put(token, data)
    return token
