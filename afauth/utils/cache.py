"""Single-slot TTL cache for health check results"""
import time
from typing import Callable, Generic, Optional, Tuple, TypeVar

from cachetools import TTLCache

T = TypeVar("T")

_SLOT = "value"


class TimedCache(Generic[T]):
    """Holds one value for ``ttl_seconds`` on top of ``cachetools.TTLCache``.

    The clock is passed through as the cache timer so tests can move time
    forward deterministically.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: TTLCache = TTLCache(maxsize=1, ttl=ttl_seconds, timer=clock)

    def _entry(self) -> Optional[Tuple[T, float]]:
        return self._cache.get(_SLOT)

    def get(self) -> Optional[T]:
        """Return the cached value, or None when empty or stale"""
        entry = self._entry()
        return entry[0] if entry is not None else None

    def set(self, value: T) -> None:
        self._cache[_SLOT] = (value, self._clock())

    def clear(self) -> None:
        self._cache.clear()

    @property
    def age(self) -> Optional[float]:
        entry = self._entry()
        if entry is None:
            return None
        return self._clock() - entry[1]
