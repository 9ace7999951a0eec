"""
Shared volatile store used for the access-token blacklist.

Two interchangeable backends expose the same methods:
- RedisStore: production, shared between processes
- InMemoryStore: single process, selected with a "memory://" URL (tests, local dev)
"""

import threading
import time
from typing import Optional

from redis import Redis
from utils.logger import get_logger

logger = get_logger(__name__)


class RedisStore:
    """Thin Redis wrapper with bounded socket timeouts."""

    def __init__(self, url: str, *, socket_timeout: float = 5.0, client: Optional[Redis] = None):
        self.url = url
        if client is None:
            client = Redis.from_url(
                url,
                decode_responses=True,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
        self.client = client

    def get(self, key: str) -> Optional[str]:
        return self.client.get(key)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self.client.set(key, value, ex=ttl_seconds)

    def exists(self, key: str) -> bool:
        return bool(self.client.exists(key))

    def ttl(self, key: str) -> int:
        return int(self.client.ttl(key))

    def close(self) -> None:
        self.client.close()


class InMemoryStore:
    """
    Process-local store with the same semantics as RedisStore.

    Expired keys behave exactly like missing keys. Writes sweep out
    expired entries at most once per SWEEP_INTERVAL_SECONDS.
    """

    SWEEP_INTERVAL_SECONDS = 1.0

    def __init__(self):
        self._data: dict[str, tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()
        self._last_sweep = time.monotonic()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def _live(self, key: str):
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._data[key]
            return None
        return entry

    def _sweep(self, now: float) -> None:
        if now - self._last_sweep < self.SWEEP_INTERVAL_SECONDS:
            return
        self._last_sweep = now
        expired = [key for key, (_, expires_at) in self._data.items()
                   if expires_at is not None and expires_at <= now]
        for key in expired:
            del self._data[key]

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            now = time.monotonic()
            self._sweep(now)
            self._data[key] = (value, now + ttl_seconds)

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    def ttl(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return -2
            if entry[1] is None:
                return -1
            return max(0, int(round(entry[1] - time.monotonic())))

    def close(self) -> None:
        with self._lock:
            self._data.clear()


def create_store(url: str, timeout: float = 5.0):
    """
    Returns the store matching the URL scheme.
    "memory://" gives an InMemoryStore, anything else is handed to Redis.
    """
    if url.startswith("memory://"):
        logger.warning("Using in-memory volatile store; the blacklist is not shared")
        return InMemoryStore()
    return RedisStore(url, socket_timeout=timeout)
