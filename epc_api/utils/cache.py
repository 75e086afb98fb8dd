import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional


# =============================
# Thread-safe in-memory TTL cache
# =============================
@dataclass
class TTLCacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._store: Dict[str, TTLCacheEntry] = {}
        self._lock = threading.RLock()
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._store.get(key)
            if not entry or entry.expires_at <= self._clock():
                self._store.pop(key, None)
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl_sec: float) -> None:
        with self._lock:
            self._store[key] = TTLCacheEntry(value=value, expires_at=self._clock() + ttl_sec)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
