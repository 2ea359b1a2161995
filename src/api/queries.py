"""
Order Query Gateway

Read side of the pipeline: looks orders up directly in storage and returns
their wire encoding. Reads never go through the queue, so an order becomes
visible only once the consumer has materialized it.
"""

import logging
from typing import Any, Dict, List

from src.shared.errors import MalformedPayload


class OrderQueryService:
    """Fetch one order by id, or every order."""

    def __init__(self, store):
        self.store = store
        self.logger = logging.getLogger(__name__)

    def get_by_id(self, order_uid: str) -> Dict[str, Any]:
        """
        Args:
            order_uid: Identifier from the request path

        Returns:
            Order wire encoding (items is always a list)

        Raises:
            MalformedPayload: Empty or blank identifier
            NotFound: No such order
            StorageUnavailable: Database unreachable
        """
        if not order_uid or not order_uid.strip():
            raise MalformedPayload("order_uid must not be empty")

        order = self.store.fetch_by_id(order_uid)
        self.logger.debug("Order fetched", extra={"correlation_id": order_uid})
        return order.to_wire()

    def get_all(self) -> List[Dict[str, Any]]:
        """Every stored order, ordered by order_uid."""
        orders = [order.to_wire() for order in self.store.fetch_all()]
        self.logger.debug("Orders listed", extra={"count": len(orders)})
        return orders
