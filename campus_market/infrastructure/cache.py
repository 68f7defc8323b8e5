import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60
DETAIL_TTL_SECONDS = 2 * 60
DEFAULT_MAX_SIZE = 1000

_MISSING = object()


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    size: int
    max_size: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return round(self.hits / total * 100, 2) if total else 0.0


class CacheService:
    """Process-wide TTL + LRU key/value cache in front of the document store.

    Entries are ordered from least to most recently used. A cache is advisory:
    write paths must delete or overwrite the keys they affect before returning.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[Any, float]]" = OrderedDict()
        # key -> (loads in flight, invalidations seen while they run)
        self._loads: Dict[str, Tuple[int, int]] = {}
        self._hits = 0
        self._misses = 0

    def _expired(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return True
        if self._clock() > entry[1]:
            del self._entries[key]
            return True
        return False

    def get(self, key: str, default: Optional[Any] = None) -> Optional[Any]:
        if self._expired(key):
            self._misses += 1
            return default
        self._hits += 1
        self._entries.move_to_end(key)
        return self._entries[key][0]

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted least recently used key %s", evicted)
        self._entries[key] = (value, self._clock() + ttl)

    def has(self, key: str) -> bool:
        return not self._expired(key)

    def _invalidated(self, key: str) -> None:
        if key in self._loads:
            count, generation = self._loads[key]
            self._loads[key] = (count, generation + 1)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)
        self._invalidated(key)

    def clear(self) -> None:
        self._entries.clear()
        for key in list(self._loads):
            self._invalidated(key)
        self._hits = 0
        self._misses = 0

    def set_batch(self, items: Iterable[Tuple[str, Any]], ttl: Optional[float] = None) -> None:
        for key, value in items:
            self.set(key, value, ttl)

    def invalidate_pattern(self, pattern: str) -> int:
        regex = re.compile(pattern)
        doomed = [key for key in self._entries if regex.search(key)]
        for key in doomed:
            del self._entries[key]
        for key in [k for k in self._loads if regex.search(k)]:
            self._invalidated(key)
        return len(doomed)

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[Any]], ttl: Optional[float] = None) -> Any:
        """Return the cached value, or await ``loader`` and cache its result.

        A result is not cached when ``key`` was deleted or matched by
        ``invalidate_pattern`` while the loader was running; the caller still
        gets it, but the next read goes back to the loader.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        count, generation = self._loads.get(key, (0, 0))
        self._loads[key] = (count + 1, generation)
        try:
            value = await loader()
        finally:
            count, latest = self._loads[key]
            if count == 1:
                del self._loads[key]
            else:
                self._loads[key] = (count - 1, latest)
        if latest == generation:
            self.set(key, value, ttl)
        else:
            logger.debug("Dropped load of %s invalidated mid-flight", key)
        return value

    def purge_expired(self) -> int:
        now = self._clock()
        doomed = [key for key, (_, expires_at) in self._entries.items() if now > expires_at]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def stats(self) -> CacheStats:
        return CacheStats(hits=self._hits, misses=self._misses, size=len(self._entries), max_size=self.max_size)

    def keys(self) -> Tuple[str, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


def snapshot(stats: CacheStats) -> Dict[str, Any]:
    return {
        "hits": stats.hits,
        "misses": stats.misses,
        "hit_rate": stats.hit_rate,
        "size": stats.size,
        "max_size": stats.max_size,
    }
