"""
Order aggregate as it travels on the wire and through the pipeline.

Every field has an empty default: a payload that is valid JSON with the right
types but missing fields still decodes, and the validator reports what is
missing. Only malformed JSON or wrong types fail decoding.
"""

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from orderstream.errors import OrderDecodeError


class Delivery(BaseModel):
    name: str = ""
    phone: str = ""
    zip: str = ""
    city: str = ""
    address: str = ""
    region: str = ""
    email: str = ""


class Payment(BaseModel):
    transaction: str = ""
    request_id: str = ""
    currency: str = ""
    provider: str = ""
    amount: int = 0  # minor units
    payment_dt: int = 0  # unix seconds
    bank: str = ""
    delivery_cost: int = 0
    goods_total: int = 0
    custom_fee: int = 0


class Item(BaseModel):
    chrt_id: int = 0
    track_number: str = ""
    price: int = 0
    rid: str = ""
    name: str = ""
    sale: int = 0
    size: str = ""
    total_price: int = 0
    nm_id: int = 0
    brand: str = ""
    status: int = 0


class Order(BaseModel):
    order_uid: str = ""
    track_number: str = ""
    entry: str = ""
    delivery: Delivery = Field(default_factory=Delivery)
    payment: Payment = Field(default_factory=Payment)
    items: List[Item] = Field(default_factory=list)
    locale: str = ""
    internal_signature: str = ""
    customer_id: str = ""
    delivery_service: str = ""
    shardkey: str = ""
    sm_id: int = 0
    date_created: Optional[datetime] = None
    oof_shard: str = ""

    def to_json(self) -> bytes:
        return self.model_dump_json().encode("utf-8")


def decode_order(raw: Union[bytes, str]) -> Order:
    """Parse a message body into an Order, raising OrderDecodeError on bad structure"""
    try:
        return Order.model_validate_json(raw)
    except ValidationError as e:
        raise OrderDecodeError(f"cannot decode order: {e.error_count()} error(s): {e.errors()[0]['msg']}") from e
