"""
In-memory result cache for cacheable actions.

Keys look like ``"posts.list:10|0|\\"title\\"|null"``: the fully qualified
action name followed by the JSON encoding of each declared cache-key
parameter. The cacher subscribes to ``cache.clean`` and drops every key
matching the broadcast pattern (``"posts.*"``).
"""

import asyncio
import copy
import fnmatch
import json
import logging
import time
from collections import OrderedDict
from collections.abc import Iterable, Mapping
from typing import Any

from ..constants import (
    CACHE_CLEAN_EVENT,
    CACHE_KEY_SEPARATOR,
    DEFAULT_CACHE_TTL,
    MAX_CACHE_SIZE,
)
from .events import EventBus

logger = logging.getLogger(__name__)


class MemoryCacher:
    """
    TTL cache guarded by an asyncio lock.

    Values are deep-copied on the way in and out so callers can never
    mutate a cached result. ``None`` results are not cached.

    Every :meth:`clean` bumps :attr:`generation`. A caller that reads the
    generation before computing a value and passes it to :meth:`set` never
    stores a result computed before an invalidation.
    """

    def __init__(self, ttl: float | None = DEFAULT_CACHE_TTL, max_size: int = MAX_CACHE_SIZE):
        """
        Initialize the cacher.

        Args:
            ttl: Entry lifetime in seconds (None keeps entries until cleaned)
            max_size: Maximum number of entries; the oldest is evicted first
        """
        self.ttl = ttl
        self.max_size = max_size
        self._cache: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self._lock = asyncio.Lock()
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def attach(self, bus: EventBus) -> None:
        """Subscribe to cache invalidation events on `bus`."""
        bus.on(CACHE_CLEAN_EVENT, self._on_clean)

    async def _on_clean(self, pattern: Any) -> None:
        await self.clean(pattern if isinstance(pattern, str) and pattern else "*")

    @staticmethod
    def get_cache_key(
        action_name: str, params: Mapping[str, Any], keys: Iterable[str] | None
    ) -> str:
        """Build the cache key of an action call from its declared cache keys."""
        keys = tuple(keys or ())
        if not keys:
            return action_name
        values = [json.dumps(params.get(key), sort_keys=True, default=str) for key in keys]
        return f"{action_name}:{CACHE_KEY_SEPARATOR.join(values)}"

    async def get(self, key: str) -> Any | None:
        """Return a copy of the cached value, or None on a miss or expiry."""
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            value, stored_at = entry
            if self.ttl is not None and time.time() - stored_at >= self.ttl:
                del self._cache[key]
                return None
            logger.debug(f"Cache HIT for '{key}'")
            return copy.deepcopy(value)

    async def set(self, key: str, value: Any, generation: int | None = None) -> None:
        """
        Store a copy of `value` under `key`.

        Args:
            key: Cache key
            value: Value to store (None is ignored)
            generation: Generation observed before `value` was computed; the
                        store is skipped if a clean happened since
        """
        if value is None:
            return
        async with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug(f"Cache SKIP for '{key}': invalidated while computing")
                return
            self._cache[key] = (copy.deepcopy(value), time.time())
            self._cache.move_to_end(key)
            while len(self._cache) > self.max_size:
                self._cache.popitem(last=False)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._cache.pop(key, None)

    async def clean(self, pattern: str = "*") -> int:
        """
        Drop every entry whose key matches the glob `pattern`.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            self._generation += 1
            matched = [key for key in self._cache if fnmatch.fnmatchcase(key, pattern)]
            for key in matched:
                del self._cache[key]
        logger.debug(f"Cache cleaned for pattern '{pattern}' ({len(matched)} entries)")
        return len(matched)

    def __len__(self) -> int:
        return len(self._cache)
