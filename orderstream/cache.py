"""
In-memory TTL cache of orders keyed by order_uid.

Entries are deep copies, so callers never share an Order with the cache.
Expiry is lazy: get/get_all/size treat an expired entry as absent but leave it
in the map. cleanup() removes expired entries and is driven by the service's
background task.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from orderstream.interfaces import OrderCache
from orderstream.models import Order


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers"""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self):
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self):
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    def read(self):
        return _Guard(self.acquire_read, self.release_read)

    def write(self):
        return _Guard(self.acquire_write, self.release_write)


class _Guard:
    def __init__(self, acquire, release):
        self._acquire = acquire
        self._release = release

    def __enter__(self):
        self._acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self._release()
        return False


@dataclass(frozen=True)
class CachedEntry:
    order: Order
    expires_at: float

    def expired(self, now: float) -> bool:
        return now > self.expires_at


class TTLCache(OrderCache):
    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._clock = clock
        self._lock = ReadWriteLock()
        self._entries: Dict[str, CachedEntry] = {}

    def set(self, order: Order) -> None:
        entry = CachedEntry(order=order.model_copy(deep=True), expires_at=self._clock() + self.ttl)
        with self._lock.write():
            self._entries[order.order_uid] = entry

    def get(self, order_uid: str) -> Tuple[Optional[Order], bool]:
        with self._lock.read():
            entry = self._entries.get(order_uid)
            if entry is None or entry.expired(self._clock()):
                return None, False
            return entry.order.model_copy(deep=True), True

    def get_all(self) -> List[Order]:
        with self._lock.read():
            now = self._clock()
            return [e.order.model_copy(deep=True) for e in self._entries.values() if not e.expired(now)]

    def load_from_slice(self, orders: Sequence[Order]) -> None:
        with self._lock.write():
            expires_at = self._clock() + self.ttl
            for order in orders:
                self._entries[order.order_uid] = CachedEntry(order=order.model_copy(deep=True), expires_at=expires_at)

    def size(self) -> int:
        with self._lock.read():
            now = self._clock()
            return sum(1 for e in self._entries.values() if not e.expired(now))

    def cleanup(self) -> int:
        with self._lock.write():
            now = self._clock()
            stale = [uid for uid, e in self._entries.items() if e.expired(now)]
            for uid in stale:
                del self._entries[uid]
            return len(stale)

    def __len__(self) -> int:
        """Raw entry count, expired entries included"""
        with self._lock.read():
            return len(self._entries)
