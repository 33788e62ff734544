"""
Ingestion consumer: broker -> decode -> validate -> process -> ack.

Messages are handled one at a time in arrival order. A message that cannot be
decoded or fails validation is dead-lettered and acked so it never blocks the
queue. What happens when processing fails depends on the failure policy:

  dead_letter  dead-letter the message and move on (default)
  block        keep retrying the same message with heavy backoff, unacked,
               until it succeeds or the consumer is cancelled
"""

import enum
import logging
import threading
import time
from typing import Callable, Optional

from orderstream import retry
from orderstream.dlq import DeadLetterPublisher
from orderstream.errors import DeadLetterError, NonRetryableError, RetryCancelled
from orderstream.interfaces import MessageBroker
from orderstream.metrics import MetricsRegistry, NullMetrics
from orderstream.models import Order, decode_order

logger = logging.getLogger(__name__)

POLICY_DEAD_LETTER = "dead_letter"
POLICY_BLOCK = "block"


class ConsumerState(enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DECODING = "decoding"
    VALIDATING = "validating"
    PROCESSING = "processing"
    COMMITTING = "committing"
    CANCELLED = "cancelled"


class OrderConsumer:
    def __init__(
        self,
        broker: MessageBroker,
        process: Callable[[Order], None],
        dlq: Optional[DeadLetterPublisher] = None,
        validator: Optional[Callable[[Order], None]] = None,
        metrics: Optional[MetricsRegistry] = None,
        failure_policy: str = POLICY_DEAD_LETTER,
        block_policy: Optional[retry.RetryPolicy] = None,
        reconnect_policy: Optional[retry.RetryPolicy] = None,
    ):
        if failure_policy not in (POLICY_DEAD_LETTER, POLICY_BLOCK):
            raise ValueError(f"unknown failure policy {failure_policy!r}")
        self.broker = broker
        self.process = process
        self.dlq = dlq
        self.validator = validator
        self.failure_policy = failure_policy
        self._metrics = metrics or NullMetrics()
        self._block_policy = block_policy or retry.heavy_policy()
        self._reconnect_policy = reconnect_policy or retry.heavy_policy()
        self.state = ConsumerState.IDLE

    # ---------------- main loop ----------------
    def consume(self, cancel: threading.Event) -> None:
        """Fetch and handle messages until cancel is set, then close the broker"""
        logger.info(f"consumer started policy={self.failure_policy}")
        try:
            while not cancel.is_set():
                self.state = ConsumerState.FETCHING
                try:
                    message = self.broker.fetch(cancel)
                except Exception as e:
                    if cancel.is_set():
                        break
                    self._metrics.inc("consumer_errors_total", stage="fetch")
                    logger.error(f"fetch failed: {e}")
                    self._reconnect(cancel)
                    continue

                if message is None:
                    continue
                self.handle(message, cancel)
        except RetryCancelled:
            pass
        finally:
            self.state = ConsumerState.CANCELLED
            self.broker.close()
            logger.info("consumer stopped")

    def _reconnect(self, cancel: threading.Event) -> None:
        """Reconnect in rounds of the reconnect policy until it works or cancel is set"""
        while not cancel.is_set():
            try:
                retry.run(
                    self._reconnect_policy,
                    self.broker.reconnect,
                    cancel=cancel,
                    operation="broker_reconnect",
                    metrics=self._metrics,
                )
                return
            except RetryCancelled:
                raise
            except Exception as e:
                self._metrics.inc("consumer_errors_total", stage="reconnect")
                logger.error(f"broker still unreachable, next round in {self._reconnect_policy.max_backoff}s: {e}")
                cancel.wait(self._reconnect_policy.max_backoff)

    # ---------------- one message ----------------
    def handle(self, message, cancel: Optional[threading.Event] = None) -> bool:
        """
        Run one message through the pipeline.

        Returns True if the order was processed, False if the message was
        dead-lettered, dropped, or abandoned on cancellation.
        """
        cancel = cancel or threading.Event()
        self._metrics.inc("consumer_messages_received_total")
        start = time.monotonic()
        try:
            self.state = ConsumerState.DECODING
            try:
                order = decode_order(message.value)
            except Exception as e:
                self._metrics.inc("consumer_errors_total", stage="decode")
                logger.warning(f"undecodable message topic={message.topic} key={message.key}: {e}")
                self._reject(message, e)
                return False

            self.state = ConsumerState.VALIDATING
            if self.validator is not None:
                try:
                    self.validator(order)
                except Exception as e:
                    self._metrics.inc("consumer_errors_total", stage="validate")
                    logger.warning(f"invalid order uid={order.order_uid}: {e}")
                    self._reject(message, e)
                    return False

            self.state = ConsumerState.PROCESSING
            if not self._process(message, order, cancel):
                return False

            self.state = ConsumerState.COMMITTING
            self._ack(message)
            self._metrics.inc("consumer_processed_total")
            logger.info(f"order processed uid={order.order_uid}")
            return True
        finally:
            self._metrics.observe("consumer_processing_seconds", time.monotonic() - start)
            if self.state != ConsumerState.CANCELLED:
                self.state = ConsumerState.FETCHING

    def _process(self, message, order: Order, cancel: threading.Event) -> bool:
        if self.failure_policy == POLICY_BLOCK:
            return self._process_blocking(message, order, cancel)
        try:
            self.process(order)
            return True
        except RetryCancelled:
            logger.warning(f"consumer cancelled with uid={order.order_uid} unacked; it will be redelivered")
            self.state = ConsumerState.CANCELLED
            return False
        except Exception as e:
            self._metrics.inc("consumer_errors_total", stage="process")
            logger.error(f"processing failed uid={order.order_uid}: {e}")
            self._reject(message, e)
            return False

    def _process_blocking(self, message, order: Order, cancel: threading.Event) -> bool:
        # rounds of the block policy repeat until success; the message stays unacked
        rounds = 0
        while not cancel.is_set():
            rounds += 1
            try:
                retry.run(
                    self._block_policy,
                    lambda: self.process(order),
                    cancel=cancel,
                    operation="process_order",
                    metrics=self._metrics,
                )
                return True
            except RetryCancelled:
                break
            except NonRetryableError as e:
                # retrying cannot fix it, so it must not hold the queue
                self._metrics.inc("consumer_errors_total", stage="process")
                logger.error(f"processing rejected uid={order.order_uid}: {e}")
                self._reject(message, e)
                return False
            except Exception as e:
                self._metrics.inc("consumer_errors_total", stage="process")
                logger.error(f"processing still failing uid={order.order_uid} round={rounds}: {e}")
                if cancel.wait(self._block_policy.max_backoff):
                    break
        logger.warning(f"consumer cancelled with uid={order.order_uid} unacked; it will be redelivered")
        self.state = ConsumerState.CANCELLED
        return False

    def _reject(self, message, error: BaseException) -> None:
        """Dead-letter the message, then ack it whatever the outcome"""
        if self.dlq is None:
            logger.warning(f"no dead-letter publisher; dropping message key={message.key}: {error}")
        else:
            try:
                self.dlq.send_to_dlq(message, error, attempts=1)
                self._metrics.inc("consumer_dlq_sent_total")
            except DeadLetterError as e:
                self._metrics.inc("consumer_errors_total", stage="dlq")
                logger.error(f"dropping message key={message.key} after dead-letter failure: {e}")
        self.state = ConsumerState.COMMITTING
        self._ack(message)

    def _ack(self, message) -> None:
        try:
            self.broker.ack(message)
        except Exception as e:
            self._metrics.inc("consumer_errors_total", stage="ack")
            logger.error(f"ack failed key={message.key}: {e}")
