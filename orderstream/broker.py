"""
RabbitMQ adapter built on kombu.

Each topic is a durable queue bound to a direct exchange of the same name.
Messages are consumed with manual acknowledgments and a prefetch of one, so a
queue is worked strictly in order and an unacked message is redelivered after
a reconnect. The message key travels in the AMQP correlation_id property.
"""

import logging
import socket
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

from kombu import Connection, Consumer, Exchange, Producer, Queue

from orderstream.errors import BrokerError
from orderstream.interfaces import MessageBroker
from orderstream.metrics import MetricsRegistry, NullMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BrokerMessage:
    topic: str
    key: str
    value: bytes
    headers: Dict[str, Any] = field(default_factory=dict)
    raw: Any = field(default=None, compare=False, repr=False)


def declare_queue(name: str) -> Queue:
    return Queue(name, Exchange(name, type="direct", durable=True), routing_key=name, durable=True)


class RabbitBroker(MessageBroker):
    def __init__(
        self,
        url: str,
        queue_name: str,
        prefetch_count: int = 1,
        poll_interval: float = 1.0,
        metrics: Optional[MetricsRegistry] = None,
    ):
        if not url:
            raise BrokerError("RABBIT_URL not set")
        self.url = url
        self.queue_name = queue_name
        self.prefetch_count = prefetch_count
        self.poll_interval = poll_interval
        self._metrics = metrics or NullMetrics()

        self._queue = declare_queue(queue_name)
        self._connection: Optional[Connection] = None
        self._channel = None
        self._consumer: Optional[Consumer] = None
        self._producer: Optional[Producer] = None
        self._pending: Deque = deque()
        self._lock = threading.RLock()
        self._closed = False

    # ---------------- connection ----------------
    def connect(self) -> None:
        """Open the connection; consuming starts on the first fetch"""
        with self._lock:
            if self._connection is not None:
                return
            try:
                conn = Connection(self.url, heartbeat=30)
                conn.connect()
                producer = Producer(conn.channel())
            except Exception as e:
                raise BrokerError(f"connect to {self.url.split('@')[-1]} failed: {e}") from e

            self._connection = conn
            self._producer = producer
            self._closed = False
            logger.info(f"connected to broker queue={self.queue_name}")

    def _start_consuming(self) -> None:
        with self._lock:
            if self._consumer is not None:
                return
            try:
                channel = self._connection.channel()
                consumer = Consumer(
                    channel,
                    queues=[self._queue],
                    on_message=self._pending.append,
                    no_ack=False,
                    prefetch_count=self.prefetch_count,
                )
                consumer.consume()
            except Exception as e:
                raise BrokerError(f"consume from {self.queue_name} failed: {e}") from e
            self._channel = channel
            self._consumer = consumer
            logger.info(f"consuming queue={self.queue_name} prefetch={self.prefetch_count}")

    def _release(self) -> None:
        conn = self._connection
        self._connection = None
        self._channel = None
        self._consumer = None
        self._producer = None
        # unacked deliveries die with the channel and will be redelivered
        self._pending.clear()
        if conn is not None:
            try:
                conn.release()
            except Exception as e:
                logger.warning(f"broker connection release failed: {e}")

    def reconnect(self) -> None:
        with self._lock:
            logger.info(f"reconnecting to broker queue={self.queue_name}")
            self._release()
        self.connect()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._release()
        logger.info(f"broker connection closed queue={self.queue_name}")

    # ---------------- consuming ----------------
    def fetch(self, cancel: threading.Event) -> Optional[BrokerMessage]:
        """Block until a message is delivered; None once cancel is set"""
        self.connect()
        self._start_consuming()
        while not cancel.is_set():
            if self._pending:
                raw = self._pending.popleft()
                props = raw.properties or {}
                return BrokerMessage(
                    topic=self.queue_name,
                    key=props.get("correlation_id") or "",
                    value=raw.body,
                    headers=dict(raw.headers or {}),
                    raw=raw,
                )
            try:
                self._connection.drain_events(timeout=self.poll_interval)
            except socket.timeout:
                continue
            except Exception as e:
                self._metrics.inc("broker_fetch_errors_total")
                raise BrokerError(f"fetch from {self.queue_name} failed: {e}") from e
        return None

    def ack(self, message: BrokerMessage) -> None:
        if message.raw is None:
            return
        try:
            message.raw.ack()
        except Exception as e:
            raise BrokerError(f"ack on {message.topic} failed: {e}") from e

    # ---------------- publishing ----------------
    def publish(self, topic: str, key: str, body: bytes) -> None:
        self.connect()
        queue = declare_queue(topic)
        try:
            with self._lock:
                self._producer.publish(
                    body,
                    exchange=queue.exchange,
                    routing_key=topic,
                    declare=[queue],
                    content_type="application/json",
                    content_encoding="utf-8",
                    delivery_mode=2,  # persistent
                    correlation_id=key,
                    retry=False,
                )
        except Exception as e:
            self._metrics.inc("broker_publish_errors_total", topic=topic)
            raise BrokerError(f"publish to {topic} failed: {e}") from e
        self._metrics.inc("broker_published_total", topic=topic)
