import asyncio
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from time import monotonic


@dataclass(frozen=True, slots=True)
class RateLimitRule:
    limit: int
    window_seconds: int


class InMemoryRateLimiter:
    """Sliding-window limiter keyed by actor (guest, user or bare connection)."""

    def __init__(self, clock: Callable[[], float] = monotonic) -> None:
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()
        self._last_sweep = clock()

    async def check(self, key: str, rule: RateLimitRule) -> float:
        """Record a hit and return 0, or return seconds until one is allowed."""
        now = self._clock()
        async with self._lock:
            self._sweep(now, rule.window_seconds)
            hits = self._hits.get(key)
            if hits is None:
                hits = self._hits[key] = deque()

            cutoff = now - rule.window_seconds
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= rule.limit:
                return max(hits[0] + rule.window_seconds - now, 0.001)

            hits.append(now)
            return 0.0

    async def allow(self, key: str, rule: RateLimitRule) -> bool:
        return await self.check(key, rule) == 0.0

    async def forget(self, key: str) -> None:
        async with self._lock:
            self._hits.pop(key, None)

    def tracked_keys(self) -> int:
        return len(self._hits)

    def _sweep(self, now: float, window_seconds: int) -> None:
        # At most once per window, drop keys whose newest hit has expired.
        if now - self._last_sweep < window_seconds:
            return
        self._last_sweep = now
        cutoff = now - window_seconds
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in idle:
            del self._hits[key]
