"""
Dead-letter publishing for messages the pipeline cannot process.

The record keeps the original body byte-for-byte (base64 in JSON) so a poison
message can be inspected or replayed later.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from orderstream import retry
from orderstream.errors import DeadLetterError
from orderstream.interfaces import MessageBroker
from orderstream.metrics import MetricsRegistry, NullMetrics

logger = logging.getLogger(__name__)

DLQ_SUFFIX = ".dlq"


def dead_letter_topic(topic: str) -> str:
    return f"{topic}{DLQ_SUFFIX}"


class DeadLetterRecord(BaseModel):
    model_config = ConfigDict(frozen=True, ser_json_bytes="base64", val_json_bytes="base64")

    original_message: bytes
    error: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    topic: str
    key: str = ""
    attempts: int = 1

    def to_json(self) -> bytes:
        return self.model_dump_json().encode("utf-8")


class DeadLetterPublisher:
    def __init__(
        self,
        publisher: MessageBroker,
        metrics: Optional[MetricsRegistry] = None,
        policy: Optional[retry.RetryPolicy] = None,
    ):
        self._publisher = publisher
        self._metrics = metrics or NullMetrics()
        self._policy = policy or retry.light_policy()

    def send_to_dlq(self, message, error: BaseException, attempts: int = 1) -> DeadLetterRecord:
        """
        Publish a DeadLetterRecord for `message` to its topic's dead-letter queue.

        Uses the light retry policy, so a broken broker costs at most a couple
        of short attempts. Raises DeadLetterError when every attempt fails.
        """
        record = DeadLetterRecord(
            original_message=bytes(message.value),
            error=str(error),
            topic=message.topic,
            key=message.key or "",
            attempts=attempts,
        )
        dlq_topic = dead_letter_topic(message.topic)
        body = record.to_json()

        try:
            retry.run(
                self._policy,
                lambda: self._publisher.publish(dlq_topic, record.key, body),
                operation="dlq_publish",
                metrics=self._metrics,
            )
        except Exception as e:
            self._metrics.inc("dlq_publish_failures_total", topic=message.topic)
            logger.error(f"dead-letter publish failed topic={dlq_topic} key={record.key} err={e}")
            raise DeadLetterError(f"publish to {dlq_topic} failed: {e}") from e

        self._metrics.inc("dlq_published_total", topic=message.topic)
        logger.warning(f"message sent to {dlq_topic} key={record.key} attempts={attempts} reason={record.error}")
        return record
