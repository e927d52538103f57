"""
Bounded deduplication window for redelivered push notifications.
"""

import hashlib
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional, Tuple

import redis.asyncio as redis

DedupKey = Tuple[str, str, str]

DEDUP_PREFIX = "pushpipe:dedup:"

def _digest(key: DedupKey) -> str:
    return hashlib.sha256("\0".join(key).encode()).hexdigest()

class DedupWindow:
    async def seen(self, key: DedupKey) -> bool:
        """Return True if `key` was recorded within the window; record it otherwise."""
        raise NotImplementedError

    async def close(self):
        pass

class MemoryDedupWindow(DedupWindow):
    """In-process window, bounded both in time and in entry count."""

    def __init__(self, window_seconds: int = 300, max_entries: int = 10000, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, float]" = OrderedDict()

    def _expire(self, now: float):
        while self._entries:
            _, stamp = next(iter(self._entries.items()))
            if now - stamp < self.window_seconds:
                break
            self._entries.popitem(last=False)

    async def seen(self, key: DedupKey) -> bool:
        digest = _digest(key)
        now = self._clock()
        with self._lock:
            self._expire(now)
            if digest in self._entries:
                return True
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
            self._entries[digest] = now
            return False

    def __len__(self) -> int:
        return len(self._entries)

class RedisDedupWindow(DedupWindow):
    """Window shared across API processes using SET NX with expiry."""

    def __init__(self, redis_url: str, window_seconds: int = 300, client: Optional[redis.Redis] = None):
        self.window_seconds = window_seconds
        self._client = client or redis.from_url(redis_url, decode_responses=True)

    async def seen(self, key: DedupKey) -> bool:
        created = await self._client.set(
            DEDUP_PREFIX + _digest(key), "1", nx=True, ex=self.window_seconds
        )
        return not created

    async def close(self):
        await self._client.close()

def build_dedup_window(redis_url: Optional[str], window_seconds: int, max_entries: int) -> DedupWindow:
    if redis_url:
        return RedisDedupWindow(redis_url, window_seconds=window_seconds)
    return MemoryDedupWindow(window_seconds=window_seconds, max_entries=max_entries)
