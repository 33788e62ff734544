"""Shared fixtures and in-memory fakes for the order pipeline tests."""

import threading
from collections import deque
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from orderstream.broker import BrokerMessage
from orderstream.errors import OrderNotFound
from orderstream.interfaces import MessageBroker, OrderReader, OrderWriter
from orderstream.metrics import MetricsRegistry
from orderstream.models import Delivery, Item, Order, Payment
from orderstream.retry import RetryPolicy


class FakeStore(OrderReader, OrderWriter):
    """Dict-backed store that records how often it is hit"""

    def __init__(self, orders: Optional[List[Order]] = None):
        self.orders: Dict[str, Order] = {}
        self.get_calls = 0
        self.save_calls = 0
        self.save_errors: List[Exception] = []
        self.get_all_error: Optional[Exception] = None
        self.closed = 0
        for o in orders or []:
            self.orders[o.order_uid] = o.model_copy(deep=True)

    def save_order(self, order: Order) -> None:
        self.save_calls += 1
        if self.save_errors:
            raise self.save_errors.pop(0)
        self.orders[order.order_uid] = order.model_copy(deep=True)

    def get_order(self, order_uid: str) -> Order:
        self.get_calls += 1
        if order_uid not in self.orders:
            raise OrderNotFound(order_uid)
        return self.orders[order_uid].model_copy(deep=True)

    def get_all_orders(self) -> List[Order]:
        if self.get_all_error is not None:
            raise self.get_all_error
        return [o.model_copy(deep=True) for o in self.orders.values()]

    def close(self) -> None:
        self.closed += 1


class FakeBroker(MessageBroker):
    """Queue of pre-loaded messages; sets cancel once drained"""

    def __init__(self, messages=None):
        self.messages = deque(messages or [])
        self.acked: List[BrokerMessage] = []
        self.published: List[tuple] = []
        self.publish_errors: List[Exception] = []
        self.fetch_errors: List[Exception] = []
        self.ack_error: Optional[Exception] = None
        self.reconnects = 0
        self.closed = 0

    def fetch(self, cancel: threading.Event):
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        if not self.messages:
            cancel.set()
            return None
        return self.messages.popleft()

    def ack(self, message) -> None:
        if self.ack_error is not None:
            raise self.ack_error
        self.acked.append(message)

    def publish(self, topic: str, key: str, body: bytes) -> None:
        if self.publish_errors:
            raise self.publish_errors.pop(0)
        self.published.append((topic, key, body))

    def reconnect(self) -> None:
        self.reconnects += 1

    def close(self) -> None:
        self.closed += 1


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_order(uid: str = "b563feb7b2b84b6test", price: int = 453, items: int = 1) -> Order:
    return Order(
        order_uid=uid,
        track_number="WBILMTESTTRACK",
        entry="WBIL",
        delivery=Delivery(
            name="Test Testov",
            phone="+9720000000",
            zip="2639809",
            city="Kiryat Mozkin",
            address="Ploshad Mira 15",
            region="Kraiot",
            email="test@gmail.com",
        ),
        payment=Payment(
            transaction=uid,
            request_id="",
            currency="USD",
            provider="wbpay",
            amount=1817,
            payment_dt=1637907727,
            bank="alpha",
            delivery_cost=1500,
            goods_total=317,
            custom_fee=0,
        ),
        items=[
            Item(
                chrt_id=9934930 + i,
                track_number="WBILMTESTTRACK",
                price=price,
                rid="ab4219087a764ae0btest",
                name="Mascaras",
                sale=30,
                size="0",
                total_price=317,
                nm_id=2389212,
                brand="Vivienne Sabo",
                status=202,
            )
            for i in range(items)
        ],
        locale="en",
        internal_signature="",
        customer_id="test",
        delivery_service="meest",
        shardkey="9",
        sm_id=99,
        date_created=datetime(2021, 11, 26, 6, 22, 19, tzinfo=timezone.utc),
        oof_shard="1",
    )


def make_message(value: bytes, key: str = "b563feb7b2b84b6test", topic: str = "orders") -> BrokerMessage:
    return BrokerMessage(topic=topic, key=key, value=value)


# fast policies so retry paths do not slow the suite down
FAST_POLICY = RetryPolicy(max_attempts=3, initial_backoff=0.001, max_backoff=0.005, backoff_factor=2.0, jitter=False)


@pytest.fixture()
def order() -> Order:
    return make_order()


@pytest.fixture()
def metrics() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
