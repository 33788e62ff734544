"""
Exception hierarchy for the order pipeline.

Anything deriving from NonRetryableError is terminal: the retry executor
raises it immediately instead of spending another attempt on it.
"""

from typing import Optional


class OrderStreamError(Exception):
    """Base class for all pipeline errors"""


class NonRetryableError(OrderStreamError):
    """Marker for errors that a retry cannot fix"""


class OrderDecodeError(NonRetryableError):
    """Message body could not be parsed into an Order"""


class OrderValidationError(NonRetryableError, ValueError):
    """Order failed a business rule"""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")


class OrderNotFound(NonRetryableError, LookupError):
    """No order with the given uid exists"""

    def __init__(self, order_uid: str):
        self.order_uid = order_uid
        super().__init__(f"order {order_uid!r} not found")


class StoreError(OrderStreamError):
    """Database operation failed"""

    def __init__(self, operation: str, message: str, order_uid: Optional[str] = None):
        self.operation = operation
        self.order_uid = order_uid
        where = f" order={order_uid}" if order_uid else ""
        super().__init__(f"{operation}{where}: {message}")


class RetryCancelled(OrderStreamError):
    """Cancellation fired before or between retry attempts"""


class BrokerError(OrderStreamError):
    """Broker connection, fetch, ack or publish failed"""


class DeadLetterError(OrderStreamError):
    """Publishing to the dead-letter queue failed"""


class WarmUpError(OrderStreamError):
    """Cache warm-up could not load orders from the store"""


class ConfigError(OrderStreamError, ValueError):
    """Invalid configuration value"""
