"""
Order Submission Gateway

Accepts an order payload, validates it, and publishes it to the 'orders'
topic. Used by the HTTP POST /order route and by the mock load generator.

SUBMIT FLOW:
    raw bytes → Order.decode() → Order.encode() → queue.publish(orders, key=order_uid)

- Validation happens BEFORE publishing: a payload that could never be
  stored never enters the queue
- Returns only after the broker acknowledged the append
- No internal retry: every failure is surfaced to the caller synchronously

PARTITION KEY:
- order_uid: every version of one order lands in the same partition, so the
  consumer applies them in publish order (last write wins)

ERRORS:
- MalformedPayload / InvalidField: payload rejected, nothing published
- PublishUnavailable: not confirmed durable, caller must not assume success
"""

import logging
import threading
from typing import Union

from src.shared.errors import PublishUnavailable
from src.shared.logger import CorrelationAdapter
from src.shared.models import Order


class OrderProducer:
    """
    Submission gateway publishing validated orders.

    Attributes:
        queue: Durable queue adapter
        topic: Topic for order payloads
        orders_published / publish_failures: metrics counters
    """

    def __init__(self, queue, topic: str = "orders"):
        self.queue = queue
        self.topic = topic
        self.logger = logging.getLogger(__name__)

        self.orders_published = 0
        self.publish_failures = 0
        self._counter_lock = threading.Lock()

    def submit(self, raw_payload: Union[bytes, str]) -> str:
        """
        Validate and durably queue one order.

        Args:
            raw_payload: JSON order document

        Returns:
            order_uid of the queued order

        Raises:
            MalformedPayload: Payload is not a well-formed order
            InvalidField: A field is out of range
            PublishUnavailable: Broker did not confirm the append
        """
        order = Order.decode(raw_payload)
        self.publish_order(order)
        return order.order_uid

    def publish_order(self, order: Order) -> None:
        """
        Publish the transport encoding of ``order`` keyed by order_uid.

        Raises:
            PublishUnavailable: Broker did not confirm the append
        """
        order_logger = CorrelationAdapter(self.logger, {"correlation_id": order.order_uid})

        try:
            self.queue.publish(self.topic, order.encode(), key=order.order_uid.encode("utf-8"))
        except PublishUnavailable as e:
            with self._counter_lock:
                self.publish_failures += 1
            order_logger.error(
                "Failed to publish order",
                extra={"topic": self.topic, "error": str(e)},
            )
            raise

        with self._counter_lock:
            self.orders_published += 1

        order_logger.info(
            "Order queued",
            extra={
                "topic": self.topic,
                "track_number": order.track_number,
                "items_count": len(order.items),
            },
        )
