"""
Per-client request limiting on top of the ``limits`` library.

Each client key gets ``points`` requests per ``duration_sec`` fixed window,
held in process memory. Requests over quota are refused at once; nothing is
queued.
"""
import time
from dataclasses import dataclass

from limits import RateLimitItem, parse
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter

NAMESPACE = "epc-api"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after_sec: float


class ClientRateLimiter:
    def __init__(self, points: int = 100, duration_sec: int = 900):
        if points < 1:
            raise ValueError("points must be >= 1")
        if duration_sec <= 0:
            raise ValueError("duration_sec must be > 0")
        self.item: RateLimitItem = parse(f"{int(points)} per {int(duration_sec)} seconds")
        self._storage = MemoryStorage()
        self._limiter = FixedWindowRateLimiter(self._storage)

    @property
    def points(self) -> int:
        return self.item.amount

    def consume(self, key: str) -> RateLimitDecision:
        allowed = self._limiter.hit(self.item, NAMESPACE, key)
        stats = self._limiter.get_window_stats(self.item, NAMESPACE, key)
        retry_after = 0.0 if allowed else max(0.0, stats.reset_time - time.time())
        return RateLimitDecision(
            allowed=allowed,
            remaining=max(0, stats.remaining),
            retry_after_sec=retry_after,
        )

    def clear(self, key: str) -> None:
        self._limiter.clear(self.item, NAMESPACE, key)

    def reset(self) -> None:
        self._storage.reset()
