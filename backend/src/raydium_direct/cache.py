import time
from typing import Any, Callable, Dict, Optional, Tuple


class PoolCache:
    """
    Small TTL cache for on-chain pool and market state.

    Pool state (vaults, config) is cached "hot"; OpenBook markets rarely
    change and are cached "cold". TTLs are in milliseconds of `clock`.
    """

    def __init__(self, ttl_ms_hot: int = 5000, ttl_ms_cold: int = 30000, max_size: int = 256,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_ms_hot = ttl_ms_hot
        self.ttl_ms_cold = ttl_ms_cold
        self.max_size = max_size
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}  # key -> (expires_at_ms, value)
        self.hits = 0
        self.misses = 0

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._now_ms() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any, hot: bool = True):
        ttl = self.ttl_ms_hot if hot else self.ttl_ms_cold
        if key not in self._entries and len(self._entries) >= self.max_size:
            # evict whichever entry expires first
            soonest = min(self._entries, key=lambda k: self._entries[k][0])
            del self._entries[soonest]
        self._entries[key] = (self._now_ms() + ttl, value)

    async def get_or_load(self, key: str, loader, hot: bool = True) -> Tuple[Optional[Any], bool]:
        """Return (value, cache_hit); loader is an async callable, None results aren't cached."""
        cached = self.get(key)
        if cached is not None:
            self.hits += 1
            return cached, True
        self.misses += 1
        value = await loader()
        if value is not None:
            self.set(key, value, hot=hot)
        return value, False

    def invalidate(self, key: str):
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)
