"""
Capability interfaces the orchestrator and consumer depend on.

The Postgres store, the TTL cache and the kombu broker implement these;
tests substitute in-memory fakes.
"""

import threading
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

from orderstream.models import Order


class OrderReader(ABC):
    @abstractmethod
    def get_order(self, order_uid: str) -> Order:
        """Return the stored order or raise OrderNotFound"""

    @abstractmethod
    def get_all_orders(self) -> List[Order]:
        """Return every stored order"""

    def close(self) -> None:
        pass


class OrderWriter(ABC):
    @abstractmethod
    def save_order(self, order: Order) -> None:
        """Persist the whole aggregate atomically"""

    def close(self) -> None:
        pass


class OrderCache(ABC):
    @abstractmethod
    def set(self, order: Order) -> None:
        pass

    @abstractmethod
    def get(self, order_uid: str) -> Tuple[Optional[Order], bool]:
        pass

    @abstractmethod
    def get_all(self) -> List[Order]:
        pass

    @abstractmethod
    def load_from_slice(self, orders: Sequence[Order]) -> None:
        pass

    @abstractmethod
    def size(self) -> int:
        pass

    @abstractmethod
    def cleanup(self) -> int:
        """Drop expired entries, returning how many were removed"""


class MessageBroker(ABC):
    """Fetch / ack / publish contract the consumer and publishers use"""

    @abstractmethod
    def fetch(self, cancel: threading.Event):
        """Block until a BrokerMessage arrives; return None once cancel is set"""

    @abstractmethod
    def ack(self, message) -> None:
        pass

    @abstractmethod
    def publish(self, topic: str, key: str, body: bytes) -> None:
        pass

    def reconnect(self) -> None:
        pass

    def close(self) -> None:
        pass
