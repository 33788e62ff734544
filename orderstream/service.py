"""
Order service: coordinates the durable store and the TTL cache.

Writes go to the store first and only then to the cache, so the cache never
holds an order the store does not have. Reads are served from the cache and
fall back to the store, backfilling the cache on a hit.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from orderstream.errors import OrderNotFound, WarmUpError
from orderstream.interfaces import OrderCache, OrderReader, OrderWriter
from orderstream.metrics import MetricsRegistry, NullMetrics
from orderstream.models import Order
from orderstream.validation import OrderValidator

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Call fn every `interval` seconds on a daemon thread until stop()"""

    def __init__(self, interval: float, fn: Callable[[], Any], name: str = "periodic-task"):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.fn = fn
        self.name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.fn()
            except Exception as e:
                logger.error(f"{self.name} failed: {e}")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


class OrderService:
    def __init__(
        self,
        reader: OrderReader,
        writer: OrderWriter,
        cache: OrderCache,
        validator: Optional[Callable[[Order], None]] = None,
        metrics: Optional[MetricsRegistry] = None,
        cleanup_interval: float = 600.0,
    ):
        self.reader = reader
        self.writer = writer
        self.cache = cache
        self.validator = validator or OrderValidator()
        self._metrics = metrics or NullMetrics()

        self._stats_lock = threading.Lock()
        self._last_request_time: Optional[datetime] = None
        self._last_request_duration = 0.0

        self._closed = False
        self._cleanup = PeriodicTask(cleanup_interval, self._evict_expired, name="cache-cleanup")
        self._cleanup.start()

    def _evict_expired(self) -> None:
        removed = self.cache.cleanup()
        self._metrics.set_gauge("cache_size", self.cache.size())
        if removed:
            self._metrics.inc("cache_evictions_total", removed)
            logger.info(f"cache cleanup removed {removed} expired orders")

    # ---------------- cache warm-up ----------------
    def warm_up_cache(self) -> None:
        start = time.monotonic()
        try:
            orders = self.reader.get_all_orders()
        except Exception as e:
            logger.error(f"cache warm-up failed: {e}")
            raise WarmUpError(f"failed to load orders for cache warm-up: {e}") from e

        self.cache.load_from_slice(orders)
        self._metrics.set_gauge("cache_size", self.cache.size())
        logger.info(f"cache warmed up with {len(orders)} orders in {time.monotonic() - start:.3f}s")

    # ---------------- writes ----------------
    def process_order(self, order: Order) -> None:
        """Validate, persist and cache one order"""
        if order.date_created is None:
            order.date_created = datetime.now(timezone.utc)

        self.validator(order)
        # the store runs its own heavy retry around the transaction
        self.writer.save_order(order)
        self.cache.set(order)

        self._metrics.inc("orders_processed_total")
        self._metrics.set_gauge("cache_size", self.cache.size())
        logger.info(f"order saved and cached uid={order.order_uid}")

    # ---------------- reads ----------------
    def get_order(self, order_uid: str) -> Order:
        start = time.monotonic()
        try:
            order, found = self.cache.get(order_uid)
            if found:
                self._metrics.inc("cache_hits_total")
                return order

            self._metrics.inc("cache_misses_total")
            try:
                order = self.reader.get_order(order_uid)
            except OrderNotFound:
                logger.info(f"order not found uid={order_uid}")
                raise
            self.cache.set(order)
            logger.debug(f"cache backfilled uid={order_uid}")
            return order
        finally:
            self._record_request(start)

    def _record_request(self, start: float) -> None:
        duration = time.monotonic() - start
        with self._stats_lock:
            self._last_request_time = datetime.now(timezone.utc)
            self._last_request_duration = duration
        self._metrics.observe("order_request_seconds", duration)

    def get_cache_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            last_time = self._last_request_time
            last_duration = self._last_request_duration
        return {
            "cache_size": self.cache.size(),
            "last_request_time": last_time.isoformat() if last_time else None,
            "last_request_duration_ms": round(last_duration * 1000, 3),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._cleanup.stop()
        self.reader.close()
        if self.writer is not self.reader:
            self.writer.close()
        logger.info("order service closed")
