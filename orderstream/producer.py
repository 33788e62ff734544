"""
Test-order producer used for demos and local load.

Publishes orders to the ingestion queue keyed by order_uid, the same way an
upstream system would.
"""

import logging
import random
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from orderstream import retry
from orderstream.interfaces import MessageBroker
from orderstream.metrics import MetricsRegistry, NullMetrics
from orderstream.models import Delivery, Item, Order, Payment
from orderstream.validation import OrderValidator

logger = logging.getLogger(__name__)

CITIES = ["Moscow", "Kazan", "Novosibirsk", "Yekaterinburg", "Samara"]
BRANDS = ["Vivienne Sabo", "Nike", "Adidas", "Puma", "Levi's"]
BANKS = ["alpha", "sber", "tinkoff", "vtb"]
PROVIDERS = ["wbpay", "stripe", "paypal"]
CURRENCIES = ["USD", "EUR", "RUB"]


def _uid(index: int) -> str:
    return f"testorderuid{index:020d}"[:32]


def generate_test_order(index: int) -> Order:
    """Deterministic valid order for `index`, with 1 to 5 items"""
    rnd = random.Random(index)
    uid = _uid(index)
    track = f"WBTRACK{index:08d}"

    items = []
    goods_total = 0
    for i in range(1 + index % 5):
        price = rnd.randint(100, 5000)
        sale = rnd.choice([0, 10, 20, 30])
        total = price * (100 - sale) // 100
        goods_total += total
        items.append(
            Item(
                chrt_id=rnd.randint(1_000_000, 9_999_999),
                track_number=track,
                price=price,
                rid=f"rid{index:010d}{i}",
                name=f"Item {i + 1}",
                sale=sale,
                size=rnd.choice(["0", "S", "M", "L", "XL"]),
                total_price=total,
                nm_id=rnd.randint(1_000_000, 9_999_999),
                brand=rnd.choice(BRANDS),
                status=202,
            )
        )

    delivery_cost = rnd.randint(0, 2000)
    return Order(
        order_uid=uid,
        track_number=track,
        entry="WBIL",
        delivery=Delivery(
            name=f"Test Customer {index}",
            phone=f"+7900{index % 10_000_000:07d}",
            zip=f"{100000 + index % 900000}",
            city=rnd.choice(CITIES),
            address=f"Test street {index % 100 + 1}",
            region="Test region",
            email=f"test{index}@example.com",
        ),
        payment=Payment(
            transaction=uid,
            request_id="",
            currency=rnd.choice(CURRENCIES),
            provider=rnd.choice(PROVIDERS),
            amount=goods_total + delivery_cost,
            payment_dt=int(time.time()),
            bank=rnd.choice(BANKS),
            delivery_cost=delivery_cost,
            goods_total=goods_total,
            custom_fee=0,
        ),
        items=items,
        locale="en",
        internal_signature="",
        customer_id=f"customer{index}",
        delivery_service="meest",
        shardkey=str(index % 10),
        sm_id=99,
        date_created=datetime.now(timezone.utc),
        oof_shard="1",
    )


class OrderPublisher:
    def __init__(
        self,
        broker: MessageBroker,
        topic: str,
        metrics: Optional[MetricsRegistry] = None,
        validator: Optional[Callable[[Order], None]] = None,
    ):
        self.broker = broker
        self.topic = topic
        self.validator = validator or OrderValidator()
        self._metrics = metrics or NullMetrics()

    def send_order(self, order: Order, cancel: Optional[threading.Event] = None) -> None:
        """Validate, serialize and publish one order keyed by its uid"""
        self.validator(order)
        body = order.to_json()
        retry.run(
            retry.default_policy(),
            lambda: self.broker.publish(self.topic, order.order_uid, body),
            cancel=cancel,
            operation="send_order",
            metrics=self._metrics,
        )
        self._metrics.inc("producer_messages_sent_total")
        logger.info(f"order published uid={order.order_uid} topic={self.topic}")

    def run(self, interval: float, cancel: threading.Event, start_index: int = 0) -> int:
        """Publish one generated order every `interval` seconds until cancelled"""
        index = start_index
        while not cancel.wait(interval):
            index += 1
            try:
                self.send_order(generate_test_order(index), cancel=cancel)
            except Exception as e:
                self._metrics.inc("producer_errors_total")
                logger.error(f"demo producer failed to send order {index}: {e}")
        return index - start_index

    def close(self) -> None:
        self.broker.close()
