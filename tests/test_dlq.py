import base64
import json

import pytest

from orderstream.dlq import DeadLetterPublisher, DeadLetterRecord, dead_letter_topic
from orderstream.errors import DeadLetterError
from orderstream.retry import RetryPolicy

from conftest import FakeBroker, make_message

FAST_LIGHT = RetryPolicy(max_attempts=2, initial_backoff=0.001, max_backoff=0.002, jitter=False)


def test_dead_letter_topic_suffix():
    assert dead_letter_topic("orders") == "orders.dlq"


def test_publishes_record_with_raw_bytes(metrics):
    broker = FakeBroker()
    raw = b'{"not":"valid"'
    record = DeadLetterPublisher(broker, metrics=metrics).send_to_dlq(
        make_message(raw, key="k1"), ValueError("bad json"), attempts=1
    )

    assert record.original_message == raw
    assert record.attempts == 1
    assert record.topic == "orders"

    topic, key, body = broker.published[0]
    assert (topic, key) == ("orders.dlq", "k1")
    data = json.loads(body)
    assert base64.b64decode(data["original_message"]) == raw
    assert data["error"] == "bad json"
    assert data["attempts"] == 1
    assert data["topic"] == "orders"
    assert data["timestamp"]
    assert metrics.counter("dlq_published_total", topic="orders") == 1


def test_record_is_immutable():
    record = DeadLetterRecord(original_message=b"x", error="e", topic="orders")
    with pytest.raises(Exception):
        record.error = "changed"


def test_retries_once_under_light_policy():
    broker = FakeBroker()
    broker.publish_errors = [ConnectionError("blip")]
    DeadLetterPublisher(broker, policy=FAST_LIGHT).send_to_dlq(make_message(b"{}"), ValueError("x"))
    assert len(broker.published) == 1


def test_gives_up_with_dead_letter_error(metrics):
    broker = FakeBroker()
    broker.publish_errors = [ConnectionError("down")] * 5
    publisher = DeadLetterPublisher(broker, metrics=metrics, policy=FAST_LIGHT)

    with pytest.raises(DeadLetterError):
        publisher.send_to_dlq(make_message(b"{}"), ValueError("x"))
    assert len(broker.publish_errors) == 3
    assert metrics.counter("dlq_publish_failures_total", topic="orders") == 1
