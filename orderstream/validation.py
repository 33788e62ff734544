"""
Business rules an Order must satisfy before it is persisted or cached.

Checks run in a fixed order and stop at the first failure, which is raised as
OrderValidationError(field, reason). Nothing here touches I/O.
"""

from typing import Sequence

from email_validator import EmailNotValidError, validate_email

from orderstream.errors import OrderValidationError
from orderstream.models import Delivery, Item, Order, Payment

ORDER_REQUIRED = (
    "track_number",
    "entry",
    "locale",
    "customer_id",
    "delivery_service",
    "shardkey",
    "oof_shard",
)
DELIVERY_REQUIRED = ("name", "phone", "zip", "city", "address", "region", "email")
PAYMENT_REQUIRED = ("transaction", "currency", "provider", "bank")
PAYMENT_NON_NEGATIVE = ("amount", "delivery_cost", "goods_total", "custom_fee")
ITEM_REQUIRED = ("track_number", "rid", "name", "size", "brand")


def _blank(value: str) -> bool:
    return not value or not value.strip()


def _require(obj, fields: Sequence[str], prefix: str = "") -> None:
    for name in fields:
        if _blank(getattr(obj, name)):
            raise OrderValidationError(f"{prefix}{name}", "is required")


def _is_alnum(value: str) -> bool:
    return value.isascii() and value.isalnum()


def validate_uid(order_uid: str, strict: bool = False, length: int = 32) -> None:
    if _blank(order_uid):
        raise OrderValidationError("order_uid", "is required")
    if strict:
        if len(order_uid) != length:
            raise OrderValidationError("order_uid", f"must be exactly {length} characters")
        if not _is_alnum(order_uid):
            raise OrderValidationError("order_uid", "must be alphanumeric")


def validate_delivery(delivery: Delivery, prefix: str = "delivery.") -> None:
    _require(delivery, DELIVERY_REQUIRED, prefix)
    try:
        validate_email(delivery.email, check_deliverability=False)
    except EmailNotValidError as e:
        raise OrderValidationError(f"{prefix}email", f"is not a valid email address: {e}")


def validate_payment(payment: Payment, prefix: str = "payment.") -> None:
    _require(payment, PAYMENT_REQUIRED, prefix)
    for name in PAYMENT_NON_NEGATIVE:
        if getattr(payment, name) < 0:
            raise OrderValidationError(f"{prefix}{name}", "must not be negative")
    if payment.payment_dt <= 0:
        raise OrderValidationError(f"{prefix}payment_dt", "must be a positive unix timestamp")


def validate_item(item: Item, prefix: str = "item.") -> None:
    _require(item, ITEM_REQUIRED, prefix)
    if item.chrt_id == 0:
        raise OrderValidationError(f"{prefix}chrt_id", "must be non-zero")
    if item.nm_id == 0:
        raise OrderValidationError(f"{prefix}nm_id", "must be non-zero")
    if item.price < 0:
        raise OrderValidationError(f"{prefix}price", "must not be negative")
    if item.total_price < 0:
        raise OrderValidationError(f"{prefix}total_price", "must not be negative")


def validate_order(order: Order, strict_uid: bool = False, uid_length: int = 32) -> None:
    if order is None:
        raise OrderValidationError("order", "is required")

    validate_uid(order.order_uid, strict=strict_uid, length=uid_length)
    _require(order, ORDER_REQUIRED)
    if order.sm_id == 0:
        raise OrderValidationError("sm_id", "must be non-zero")

    validate_delivery(order.delivery)
    validate_payment(order.payment)

    if not order.items:
        raise OrderValidationError("items", "must contain at least one item")
    for i, item in enumerate(order.items):
        validate_item(item, prefix=f"items[{i}].")


class OrderValidator:
    """validate_order with the uid policy bound from configuration"""

    def __init__(self, strict_uid: bool = False, uid_length: int = 32):
        self.strict_uid = strict_uid
        self.uid_length = uid_length

    def __call__(self, order: Order) -> None:
        validate_order(order, strict_uid=self.strict_uid, uid_length=self.uid_length)
