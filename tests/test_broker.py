"""RabbitBroker against kombu's in-process memory transport."""

import threading
import uuid

import pytest

from orderstream.broker import BrokerMessage, RabbitBroker
from orderstream.errors import BrokerError


@pytest.fixture()
def queue_name():
    return f"orders-{uuid.uuid4().hex}"


@pytest.fixture()
def rabbit(queue_name):
    broker = RabbitBroker("memory://", queue_name, poll_interval=0.05)
    yield broker
    broker.close()


def fetch_one(broker, timeout=5.0):
    cancel = threading.Event()
    timer = threading.Timer(timeout, cancel.set)
    timer.start()
    try:
        return broker.fetch(cancel)
    finally:
        timer.cancel()


def test_publish_then_fetch_carries_key_and_raw_body(rabbit, queue_name):
    raw = b'{"not":"valid"'
    rabbit.publish(queue_name, "key-1", raw)

    msg = fetch_one(rabbit)

    assert isinstance(msg, BrokerMessage)
    assert msg.topic == queue_name
    assert msg.key == "key-1"
    assert msg.value == raw
    rabbit.ack(msg)


def test_messages_arrive_in_order(rabbit, queue_name):
    for i in range(3):
        rabbit.publish(queue_name, f"k{i}", f'{{"n": {i}}}'.encode())

    keys = []
    for _ in range(3):
        msg = fetch_one(rabbit)
        keys.append(msg.key)
        rabbit.ack(msg)
    assert keys == ["k0", "k1", "k2"]


def test_fetch_returns_none_when_cancelled(rabbit):
    assert fetch_one(rabbit, timeout=0.2) is None


def test_publish_to_other_topic(rabbit, queue_name):
    dlq = f"{queue_name}.dlq"
    rabbit.publish(dlq, "k", b"dead")

    reader = RabbitBroker("memory://", dlq, poll_interval=0.05)
    try:
        msg = fetch_one(reader)
        assert msg.value == b"dead"
        reader.ack(msg)
    finally:
        reader.close()


def test_reconnect_and_close_are_safe(rabbit, queue_name):
    rabbit.connect()
    rabbit.reconnect()
    rabbit.publish(queue_name, "k", b"{}")
    assert fetch_one(rabbit).value == b"{}"
    rabbit.close()
    rabbit.close()


def test_requires_url():
    with pytest.raises(BrokerError):
        RabbitBroker("", "orders")
