"""
SQLAlchemy ORM Model for Order Storage

One row per order, keyed by order_uid. Order-level scalars are typed
columns (directly queryable); Delivery, Payment and Items have no query
surface of their own and are embedded as JSONB documents.

PORTABILITY:
- PostgreSQL: nested documents are JSONB, indexed with GIN
- SQLite (local runs, unit tests): the same columns fall back to JSON text
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, TIMESTAMP, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, generic JSON elsewhere
JSONDocument = JSON().with_variant(JSONB(), "postgresql")

# Primary key length limit, enforced before the row reaches the database
ORDER_UID_MAX_LENGTH = 255


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class OrderRecord(Base):
    """
    Stored order row.

    Attributes:
        order_uid: Producer-assigned identifier (PRIMARY KEY)
        delivery / payment: Embedded JSON documents, never NULL
        items: Embedded JSON array, never NULL (empty list when no items)
        processed_at: First materialization time; not touched by later upserts
    """

    __tablename__ = "orders"

    order_uid: Mapped[str] = mapped_column(
        String(ORDER_UID_MAX_LENGTH), primary_key=True, comment="Producer-assigned order identifier"
    )

    track_number: Mapped[str] = mapped_column(String, nullable=False, default="")
    entry: Mapped[str] = mapped_column(String, nullable=False, default="")

    # ==========================================================================
    # EMBEDDED DOCUMENTS
    # ==========================================================================

    delivery: Mapped[Dict[str, Any]] = mapped_column(JSONDocument, nullable=False)
    payment: Mapped[Dict[str, Any]] = mapped_column(JSONDocument, nullable=False)
    items: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONDocument, nullable=False, comment="Line items; empty array when the order has none"
    )

    # ==========================================================================
    # SCALAR METADATA
    # ==========================================================================

    locale: Mapped[str] = mapped_column(String, nullable=False, default="")
    internal_signature: Mapped[str] = mapped_column(String, nullable=False, default="")
    customer_id: Mapped[str] = mapped_column(String, nullable=False, default="", index=True)
    delivery_service: Mapped[str] = mapped_column(String, nullable=False, default="")
    shardkey: Mapped[str] = mapped_column(String, nullable=False, default="")
    sm_id: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    date_created: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, index=True
    )
    oof_shard: Mapped[str] = mapped_column(String, nullable=False, default="")

    processed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        comment="First write time, used for consumer lag tracking",
    )

    __table_args__ = (
        # GIN index for JSONB containment queries on items (PostgreSQL only)
        Index("idx_orders_items_gin", "items", postgresql_using="gin"),
        {"comment": "Orders materialized from the orders stream"},
    )

    def to_mapping(self) -> Dict[str, Any]:
        """Column values as a plain dict (input for Order.from_storage)."""
        return {column.name: getattr(self, column.key) for column in self.__table__.columns}

    def __repr__(self) -> str:
        return (
            f"<OrderRecord(order_uid={self.order_uid}, "
            f"track_number={self.track_number}, "
            f"customer_id={self.customer_id})>"
        )
