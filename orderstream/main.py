"""
Process entry point.

    python -m orderstream.main serve        # HTTP API + consumer (+ demo producer)
    python -m orderstream.main consume      # consumer only
    python -m orderstream.main produce 10   # publish N test orders and exit
"""

import logging
import signal
import sys
import threading
from typing import List, Optional

import uvicorn

from orderstream import retry
from orderstream.api import create_app
from orderstream.broker import RabbitBroker
from orderstream.cache import TTLCache
from orderstream.config import Settings, load_settings
from orderstream.consumer import OrderConsumer
from orderstream.db import connect_pool
from orderstream.dlq import DeadLetterPublisher
from orderstream.errors import ConfigError, WarmUpError
from orderstream.metrics import MetricsRegistry
from orderstream.producer import OrderPublisher, generate_test_order
from orderstream.service import OrderService
from orderstream.store import PostgresOrderStore, is_transient
from orderstream.validation import OrderValidator

logger = logging.getLogger("orderstream")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


class Pipeline:
    """Everything a running process owns, in shutdown order"""

    def __init__(self, cfg: Settings, metrics: MetricsRegistry, cancel: threading.Event):
        self.cfg = cfg
        self.metrics = metrics
        self.cancel = cancel
        self.validator = OrderValidator(strict_uid=cfg.order_uid_strict, uid_length=cfg.order_uid_length)
        self.store: Optional[PostgresOrderStore] = None
        self.service: Optional[OrderService] = None
        self.consumer: Optional[OrderConsumer] = None
        self.threads: List[threading.Thread] = []

    def start_storage(self) -> None:
        """Connect, create the schema and warm the cache; raises on fatal errors"""
        cfg = self.cfg
        pool = retry.run(
            retry.heavy_policy(),
            lambda: connect_pool(cfg.database_url, cfg.db_pool_min, cfg.db_pool_max),
            cancel=self.cancel,
            retryable=is_transient,
            operation="db_connect",
            metrics=self.metrics,
        )
        self.store = PostgresOrderStore(pool, metrics=self.metrics, cancel=self.cancel)
        self.store.init()

        cache = TTLCache(cfg.cache_ttl_seconds)
        self.service = OrderService(
            self.store,
            self.store,
            cache,
            validator=self.validator,
            metrics=self.metrics,
            cleanup_interval=cfg.cache_cleanup_seconds,
        )
        try:
            # get_all_orders already retries transient failures
            self.service.warm_up_cache()
        except WarmUpError as e:
            # the cache fills itself from reads; serving without warm-up is fine
            logger.warning(f"starting with a cold cache: {e}")

    def start_consumer(self) -> None:
        cfg = self.cfg
        broker = RabbitBroker(cfg.rabbit_url, cfg.orders_queue, metrics=self.metrics)
        self.consumer = OrderConsumer(
            broker,
            self.service.process_order,
            dlq=DeadLetterPublisher(broker, metrics=self.metrics),
            validator=self.validator,
            metrics=self.metrics,
            failure_policy=cfg.process_failure_policy,
        )
        self._spawn("order-consumer", self._consume)

    def _consume(self) -> None:
        try:
            self.consumer.consume(self.cancel)
        except Exception as e:
            logger.error(f"consumer exited with error: {e}")

    def start_demo_producer(self) -> None:
        # a separate connection; kombu connections are not shared across threads
        broker = RabbitBroker(self.cfg.rabbit_url, self.cfg.orders_queue, metrics=self.metrics)
        publisher = OrderPublisher(broker, self.cfg.orders_queue, metrics=self.metrics, validator=self.validator)

        def produce():
            try:
                publisher.run(self.cfg.demo_producer_interval, self.cancel)
            finally:
                publisher.close()

        self._spawn("demo-producer", produce)
        logger.info(f"demo producer publishing every {self.cfg.demo_producer_interval}s")

    def _spawn(self, name: str, target) -> None:
        t = threading.Thread(target=target, name=name, daemon=True)
        t.start()
        self.threads.append(t)

    def wait(self) -> None:
        while not self.cancel.wait(1.0):
            if not any(t.is_alive() for t in self.threads):
                break

    def shutdown(self) -> None:
        logger.info("shutting down...")
        self.cancel.set()
        for t in self.threads:
            t.join(self.cfg.shutdown_timeout_seconds)
            if t.is_alive():
                logger.warning(f"{t.name} did not stop within {self.cfg.shutdown_timeout_seconds}s")
        if self.service is not None:
            self.service.close()
        elif self.store is not None:
            self.store.close()
        logger.info("shutdown complete")


def run_serve(cfg: Settings) -> int:
    metrics = MetricsRegistry()
    pipeline = Pipeline(cfg, metrics, threading.Event())
    try:
        pipeline.start_storage()
        pipeline.start_consumer()
        if cfg.demo_producer:
            pipeline.start_demo_producer()

        app = create_app(pipeline.service, metrics=metrics, static_dir=cfg.static_dir)
        server = uvicorn.Server(uvicorn.Config(app, host=cfg.server_host, port=cfg.server_port, log_config=None))
        logger.info(f"HTTP server listening on {cfg.server_host}:{cfg.server_port}")
        # uvicorn handles SIGINT/SIGTERM and returns here
        server.run()
    except Exception as e:
        logger.error(f"fatal: {e}")
        return 1
    finally:
        pipeline.shutdown()
    return 0


def run_consume(cfg: Settings) -> int:
    cancel = threading.Event()

    def _signal_handler(sig, frame):
        logger.info("Shutdown signal received, stopping consumer...")
        cancel.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    pipeline = Pipeline(cfg, MetricsRegistry(), cancel)
    try:
        pipeline.start_storage()
        pipeline.start_consumer()
        pipeline.wait()
    except Exception as e:
        logger.error(f"fatal: {e}")
        return 1
    finally:
        pipeline.shutdown()
    return 0


def run_produce(cfg: Settings, count: int) -> int:
    broker = RabbitBroker(cfg.rabbit_url, cfg.orders_queue)
    publisher = OrderPublisher(
        broker,
        cfg.orders_queue,
        validator=OrderValidator(strict_uid=cfg.order_uid_strict, uid_length=cfg.order_uid_length),
    )
    sent = 0
    try:
        for i in range(1, count + 1):
            publisher.send_order(generate_test_order(i))
            sent += 1
    except Exception as e:
        logger.error(f"produce failed after {sent} orders: {e}")
        return 1
    finally:
        publisher.close()
    logger.info(f"published {sent} orders to {cfg.orders_queue}")
    return 0


def usage() -> None:
    print("Usage:")
    print("  python -m orderstream.main serve        # HTTP API + consumer")
    print("  python -m orderstream.main consume      # consumer only")
    print("  python -m orderstream.main produce N    # publish N test orders")


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    mode = argv[0].strip().lower() if argv else "serve"

    try:
        cfg = load_settings()
    except ConfigError as e:
        configure_logging()
        logger.error(f"invalid configuration: {e}")
        return 1
    configure_logging(cfg.log_level)

    if mode == "serve":
        return run_serve(cfg)
    if mode in ("consume", "worker"):
        return run_consume(cfg)
    if mode == "produce":
        try:
            count = int(argv[1]) if len(argv) > 1 else 10
        except ValueError:
            usage()
            return 2
        return run_produce(cfg, count)

    usage()
    return 2


if __name__ == "__main__":
    sys.exit(main())
