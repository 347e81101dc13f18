"""Short-lived in-memory cache for rendered map images."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from threading import RLock
from typing import Callable, Tuple

from cachetools import TTLCache

logger = logging.getLogger(__name__)

DEFAULT_TTL_S = 60.0


@dataclass(frozen=True)
class CachedRender:
    body: bytes
    content_type: str
    expires_at: float


class RenderCache:
    """TTL cache keyed by render parameters plus the newest sample timestamp.

    Entries are immutable and only inserted once rendering has finished, so a
    reader sees either no entry or a complete one. Expired entries are dropped
    lazily by the underlying ``TTLCache``; by default the entry count is
    unbounded. Two concurrent misses on one key both render.
    """

    def __init__(
        self,
        ttl_s: float = DEFAULT_TTL_S,
        maxsize: float = math.inf,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: TTLCache[str, CachedRender] = TTLCache(maxsize=maxsize, ttl=ttl_s, timer=clock)
        self._lock = RLock()

    def get(self, key: str) -> CachedRender | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, body: bytes, content_type: str) -> CachedRender:
        entry = CachedRender(body=body, content_type=content_type, expires_at=self._clock() + self.ttl_s)
        with self._lock:
            self._entries[key] = entry
        return entry

    def get_or_render(self, key: str, render_fn: Callable[[], Tuple[bytes, str]]) -> CachedRender:
        """Return the live entry for ``key`` or call ``render_fn`` and store its result."""
        cached = self.get(key)
        if cached is not None:
            logger.debug("Render cache hit: %s", key)
            return cached
        logger.debug("Render cache miss: %s", key)
        body, content_type = render_fn()
        return self.put(key, body, content_type)

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
