"""
Order Model: Canonical In-Memory Representation

This module defines the order document that flows through the pipeline:

    HTTP body → Order.decode() → Kafka (Order.encode()) → Order.decode()
              → OrderStore.upsert(Order.to_storage()) → Order.from_storage()
              → Order.to_wire() → HTTP response

WHY PYDANTIC?
- One declaration gives parsing, validation and serialization
- Unknown fields are ignored (forward compatibility with newer producers)
- Field constraints (ge=0) reject negative money before it reaches storage

OWNERSHIP:
- Delivery, Payment and Item have no identity of their own
- They are embedded by value inside exactly one Order
- Storage keeps them as nested JSON documents, not separate tables

MONEY:
- All monetary fields are integers in minor currency units (kopecks, cents)
- Never floats: no rounding drift between producer, queue and database
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.shared.errors import InvalidField, MalformedPayload

# Pydantic error types that mean "well-formed but out of range".
# Everything else (missing, wrong type, bad JSON) is a malformed payload.
RANGE_ERROR_TYPES = {
    "greater_than_equal",
    "greater_than",
    "less_than_equal",
    "less_than",
}


# ==============================================================================
# NESTED VALUE RECORDS
# ==============================================================================


class Delivery(BaseModel):
    """Recipient contact and address."""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    phone: str = ""
    zip: str = ""
    city: str = ""
    address: str = ""
    region: str = ""
    email: str = ""


class Payment(BaseModel):
    """Payment transaction. Amounts are integer minor units."""

    model_config = ConfigDict(extra="ignore")

    transaction: str = ""
    request_id: str = ""
    currency: str = ""
    provider: str = ""
    amount: int = Field(default=0, ge=0)
    payment_dt: int = Field(default=0, ge=0, description="Unix timestamp (seconds)")
    bank: str = ""
    delivery_cost: int = Field(default=0, ge=0)
    goods_total: int = Field(default=0, ge=0)
    custom_fee: int = Field(default=0, ge=0)


class Item(BaseModel):
    """One order line."""

    model_config = ConfigDict(extra="ignore")

    chrt_id: int = Field(default=0, ge=0)
    track_number: str = ""
    price: int = Field(default=0, ge=0)
    rid: str = ""
    name: str = ""
    sale: int = Field(default=0, ge=0, le=100, description="Discount percentage")
    size: str = ""
    total_price: int = Field(default=0, ge=0)
    nm_id: int = Field(default=0, ge=0)
    brand: str = ""
    status: int = Field(default=0, ge=0)


# ==============================================================================
# ORDER
# ==============================================================================


class Order(BaseModel):
    """
    Order document keyed by order_uid.

    order_uid is assigned by the producer and never regenerated. A later
    message with the same order_uid replaces the stored order in place.

    Attributes:
        order_uid: Unique order identifier (PRIMARY KEY in storage)
        delivery: Exactly one Delivery, required
        payment: Exactly one Payment, required
        items: Ordered line items, may be empty, never null
        date_created: Creation timestamp (optional, timezone-aware)
    """

    model_config = ConfigDict(extra="ignore")

    order_uid: str = Field(..., min_length=1)
    track_number: str = ""
    entry: str = ""
    delivery: Delivery
    payment: Payment
    items: List[Item] = Field(default_factory=list)
    locale: str = ""
    internal_signature: str = ""
    customer_id: str = ""
    delivery_service: str = ""
    shardkey: str = ""
    sm_id: int = Field(default=0, ge=0)
    date_created: Optional[datetime] = None
    oof_shard: str = ""

    @field_validator("order_uid")
    @classmethod
    def _order_uid_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("order_uid must not be blank")
        return value

    @field_validator("items", mode="before")
    @classmethod
    def _items_never_null(cls, value: Any) -> Any:
        # Producers that serialize an empty slice as null still mean "no items"
        return [] if value is None else value

    @field_validator("date_created")
    @classmethod
    def _date_created_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Naive timestamps are UTC; aware ones are normalized to UTC
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    # ==========================================================================
    # TRANSPORT ENCODING (Kafka message value)
    # ==========================================================================

    def encode(self) -> bytes:
        """Serialize to compact UTF-8 JSON for publishing."""
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def decode(cls, payload: Union[bytes, bytearray, str]) -> "Order":
        """
        Parse and validate a transport payload.

        Args:
            payload: JSON document (bytes or str)

        Returns:
            Validated Order

        Raises:
            MalformedPayload: Not JSON, not an object, missing delivery/payment,
                empty order_uid, or wrong field types
            InvalidField: A numeric field is out of range; ``field`` holds the
                dotted path, e.g. ``items.0.price``
        """
        if isinstance(payload, bytearray):
            payload = bytes(payload)

        try:
            return cls.model_validate_json(payload)
        except ValidationError as e:
            raise _translate_validation_error(e) from e

    # ==========================================================================
    # STORAGE ENCODING (orders table row)
    # ==========================================================================

    def to_storage(self) -> Dict[str, Any]:
        """
        Row values for the orders table.

        Scalars map to columns; delivery, payment and items become plain
        JSON-compatible structures for the JSONB columns.
        """
        row = self.model_dump(exclude={"delivery", "payment", "items"})
        row["delivery"] = self.delivery.model_dump(mode="json")
        row["payment"] = self.payment.model_dump(mode="json")
        row["items"] = [item.model_dump(mode="json") for item in self.items]
        return row

    @classmethod
    def from_storage(cls, row: Mapping[str, Any]) -> "Order":
        """
        Rebuild an Order from a stored row.

        Nested columns may arrive as decoded structures (JSONB) or as JSON
        text, depending on the driver.
        """
        data = {name: row[name] for name in cls.model_fields if name in row}

        for column in ("delivery", "payment", "items"):
            if isinstance(data.get(column), (str, bytes)):
                data[column] = json.loads(data[column])

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise _translate_validation_error(e) from e

    # ==========================================================================
    # WIRE ENCODING (HTTP response body)
    # ==========================================================================

    def to_wire(self) -> Dict[str, Any]:
        """JSON-compatible dict; items is always a list."""
        return self.model_dump(mode="json")

    def __str__(self) -> str:
        return f"Order {self.order_uid} - {self.track_number} - {len(self.items)} item(s)"


def _translate_validation_error(error: ValidationError) -> Exception:
    """Map a pydantic ValidationError onto the pipeline error taxonomy."""
    details = error.errors()

    # Out-of-range only when every problem is a range problem
    if all(detail["type"] in RANGE_ERROR_TYPES for detail in details):
        detail = details[0]
        field = ".".join(str(part) for part in detail["loc"])
        return InvalidField(field, detail["msg"])

    summary = "; ".join(
        f"{'.'.join(str(part) for part in detail['loc']) or '<root>'}: {detail['msg']}"
        for detail in details
    )
    return MalformedPayload(summary)
