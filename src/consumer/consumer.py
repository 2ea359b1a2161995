"""
Order Ingestion Consumer

This module implements the consumer that reads order payloads from the
'orders' topic and upserts them into the orders table.

PER-MESSAGE STATE MACHINE:
┌─────────────────────────────────────────────────────────────────────────┐
│  RECEIVED → DECODED → VALIDATED → PERSISTED → ACKNOWLEDGED              │
│      │          │                     │                                 │
│      └──────────┴──── FAILED(kind) ───┘                                 │
├─────────────────────────────────────────────────────────────────────────┤
│  malformed_payload / invalid_field / constraint_violation / unexpected  │
│      → log, ack, move on (poison message never blocks the queue)        │
│  storage_unavailable                                                    │
│      → nak (redeliver), back off, keep the message                      │
│      → after dead_letter_after attempts: publish to DLQ, ack            │
└─────────────────────────────────────────────────────────────────────────┘

LOOP-LEVEL TRANSITIONS:
- idle: no message within poll_timeout_seconds → re-poll (not an error)
- subscription failure: back off and retry; after max_subscribe_failures
  consecutive failures raise ConsumerHalted

AT-LEAST-ONCE DELIVERY:
- Ack happens only AFTER the upsert committed
- Crash between upsert and ack → message redelivered → upsert replaces the
  row with identical values (idempotent, same end state)
- Two versions of one order_uid are applied in publish order → last write wins

SHUTDOWN:
- stop() only flips a flag checked between messages, so the in-flight
  message always reaches ack or nak before the subscription is released
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from src.consumer.config import ConsumerConfig
from src.shared.errors import (
    ConstraintViolation,
    ConsumerHalted,
    InvalidField,
    MalformedPayload,
    PublishUnavailable,
    StorageUnavailable,
    SubscriptionUnavailable,
)
from src.shared.logger import CorrelationAdapter
from src.shared.models import Order

# ==============================================================================
# PROCESSING STATES
# ==============================================================================


class MessageState(str, Enum):
    RECEIVED = "received"
    DECODED = "decoded"
    VALIDATED = "validated"
    PERSISTED = "persisted"
    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"


class FailureKind(str, Enum):
    MALFORMED_PAYLOAD = "malformed_payload"
    INVALID_FIELD = "invalid_field"
    CONSTRAINT_VIOLATION = "constraint_violation"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class ProcessingResult:
    """
    Outcome of one message.

    acknowledged is False only when the message was left for redelivery
    (storage unavailable) or the ack itself failed.
    """

    state: MessageState
    message_id: str
    order_uid: Optional[str] = None
    failure: Optional[FailureKind] = None
    acknowledged: bool = False
    dead_lettered: bool = False


# ==============================================================================
# CONSUMER
# ==============================================================================


class OrderConsumer:
    """
    Ingestion consumer for order payloads.

    Attributes:
        config: Consumer configuration
        queue: Durable queue adapter (publish/subscribe)
        store: Storage adapter (upsert)
        running: Loop flag, cleared by stop()
        messages_processed / messages_failed / messages_dropped /
        messages_retried / messages_dead_lettered / idle_polls: metrics counters
    """

    def __init__(self, config: ConsumerConfig, queue, store):
        self.config = config
        self.queue = queue
        self.store = store
        self.logger = logging.getLogger(__name__)

        # Metrics counters
        self.messages_processed = 0
        self.messages_failed = 0
        self.messages_dropped = 0
        self.messages_retried = 0
        self.messages_dead_lettered = 0
        self.idle_polls = 0

        self.running = False
        self._stop_event = threading.Event()
        self._storage_failures = 0
        self._subscribe_failures = 0
        self._attempts: Dict[str, int] = {}

    # ==========================================================================
    # LOOP
    # ==========================================================================

    def start(self) -> None:
        """
        Subscribe and process messages until stop() is called.

        Raises:
            ConsumerHalted: Subscription failed max_subscribe_failures times in a row
        """
        # A stop() issued before the loop started still wins
        self.running = not self._stop_event.is_set()
        subscription = None

        self.logger.info(
            "Starting consumer loop",
            extra={"topic": self.config.kafka_topic_orders, "group_id": self.config.consumer_group_id},
        )

        try:
            while self.running:
                if subscription is None:
                    subscription = self._open_subscription()
                    continue
                try:
                    self.poll_once(subscription)
                except SubscriptionUnavailable:
                    # Subscription is unusable; drop it and resubscribe
                    subscription.close()
                    subscription = None
        except ConsumerHalted:
            self.logger.critical("Consumer halted after repeated subscription failures")
            raise
        finally:
            self.running = False
            if subscription is not None:
                subscription.close()
            self._log_metrics()

    def stop(self) -> None:
        """Signal the loop to exit after the in-flight message."""
        self.logger.info("Stopping consumer...")
        self.running = False
        self._stop_event.set()

    def _open_subscription(self):
        try:
            subscription = self.queue.subscribe(
                self.config.kafka_topic_orders, group_id=self.config.consumer_group_id
            )
        except SubscriptionUnavailable as e:
            self._subscription_failed(e)
            return None
        return subscription

    def poll_once(self, subscription) -> Optional[ProcessingResult]:
        """
        One loop iteration: fetch at most one message and process it.

        Returns:
            ProcessingResult, or None for the idle transition

        Raises:
            ConsumerHalted: Too many consecutive subscription failures
            SubscriptionUnavailable: Subscription failed (below the halt threshold)
        """
        try:
            message = subscription.fetch(timeout=self.config.poll_timeout_seconds)
        except SubscriptionUnavailable as e:
            self._subscription_failed(e)
            raise

        self._subscribe_failures = 0

        if message is None:
            self.idle_polls += 1
            self.logger.debug("No message within poll window, re-polling")
            return None

        return self.process(message)

    def _subscription_failed(self, error: Exception) -> None:
        self._subscribe_failures += 1
        self.logger.error(
            "Subscription failure",
            extra={
                "error": str(error),
                "consecutive_failures": self._subscribe_failures,
                "max_failures": self.config.max_subscribe_failures,
            },
        )
        if self._subscribe_failures >= self.config.max_subscribe_failures:
            raise ConsumerHalted(
                f"{self._subscribe_failures} consecutive subscription failures: {error}"
            ) from error
        self._backoff(self._subscribe_failures - 1)

    # ==========================================================================
    # MESSAGE PROCESSING
    # ==========================================================================

    def process(self, message) -> ProcessingResult:
        """
        Drive one message through decode → upsert → ack.

        Never raises for message-level problems; the outcome is reported in
        the returned ProcessingResult.
        """
        start_time = time.time()
        message_id = message.message_id
        order_logger = CorrelationAdapter(self.logger, {"correlation_id": None})

        # RECEIVED → DECODED → VALIDATED
        try:
            order = Order.decode(message.data)
        except InvalidField as e:
            return self._drop(message, FailureKind.INVALID_FIELD, e, order_logger)
        except MalformedPayload as e:
            return self._drop(message, FailureKind.MALFORMED_PAYLOAD, e, order_logger)
        except Exception as e:
            return self._drop(message, FailureKind.UNEXPECTED, e, order_logger)

        order_logger = CorrelationAdapter(self.logger, {"correlation_id": order.order_uid})
        order_logger.debug(
            "Order validated",
            extra={"message_id": message_id, "items_count": len(order.items)},
        )

        # VALIDATED → PERSISTED
        try:
            self.store.upsert(order)
        except ConstraintViolation as e:
            return self._drop(
                message, FailureKind.CONSTRAINT_VIOLATION, e, order_logger, order.order_uid
            )
        except StorageUnavailable as e:
            return self._retry_later(message, order, e, order_logger)
        except Exception as e:
            # Unknown error: skip this message and move on
            return self._drop(message, FailureKind.UNEXPECTED, e, order_logger, order.order_uid)

        self._storage_failures = 0
        self._attempts.pop(message_id, None)

        # PERSISTED → ACKNOWLEDGED
        try:
            message.ack()
        except SubscriptionUnavailable as e:
            order_logger.warning(
                "Order persisted but ack failed, message will be redelivered",
                extra={"message_id": message_id, "error": str(e)},
            )
            return ProcessingResult(
                state=MessageState.PERSISTED, message_id=message_id, order_uid=order.order_uid
            )

        self.messages_processed += 1
        order_logger.info(
            "Order persisted",
            extra={
                "message_id": message_id,
                "track_number": order.track_number,
                "processing_time_ms": round((time.time() - start_time) * 1000, 2),
                "messages_processed": self.messages_processed,
            },
        )
        return ProcessingResult(
            state=MessageState.ACKNOWLEDGED,
            message_id=message_id,
            order_uid=order.order_uid,
            acknowledged=True,
        )

    def _drop(
        self,
        message,
        kind: FailureKind,
        error: Exception,
        order_logger: CorrelationAdapter,
        order_uid: Optional[str] = None,
    ) -> ProcessingResult:
        """Poison message: log, ack, move on."""
        self.messages_failed += 1
        self.messages_dropped += 1
        order_logger.error(
            "Dropping unprocessable message",
            exc_info=kind is FailureKind.UNEXPECTED,
            extra={"message_id": message.message_id, "failure": kind.value, "error": str(error)},
        )

        acknowledged = True
        try:
            message.ack()
        except SubscriptionUnavailable:
            acknowledged = False
            order_logger.error(
                "Failed to ack dropped message", exc_info=True,
                extra={"message_id": message.message_id},
            )

        return ProcessingResult(
            state=MessageState.FAILED,
            message_id=message.message_id,
            order_uid=order_uid,
            failure=kind,
            acknowledged=acknowledged,
        )

    def _retry_later(
        self, message, order: Order, error: Exception, order_logger: CorrelationAdapter
    ) -> ProcessingResult:
        """Transient storage failure: leave for redelivery (or dead-letter) and back off."""
        self.messages_failed += 1
        message_id = message.message_id
        attempts = self._attempts.get(message_id, 0) + 1
        self._attempts[message_id] = attempts

        if self.config.dead_letter_after and attempts >= self.config.dead_letter_after:
            if self._dead_letter(message, order_logger):
                self._attempts.pop(message_id, None)
                return ProcessingResult(
                    state=MessageState.FAILED,
                    message_id=message_id,
                    order_uid=order.order_uid,
                    failure=FailureKind.STORAGE_UNAVAILABLE,
                    acknowledged=True,
                    dead_lettered=True,
                )

        self.messages_retried += 1
        backoff = self.config.backoff_seconds(self._storage_failures)
        self._storage_failures += 1

        order_logger.warning(
            f"Storage unavailable, redelivering in {backoff}s",
            extra={"message_id": message_id, "attempt": attempts, "error": str(error)},
        )

        try:
            message.nak()
        except SubscriptionUnavailable:
            # Uncommitted, so the next subscriber session still receives it
            order_logger.error("Failed to rewind subscription", exc_info=True)
            raise
        finally:
            self._stop_event.wait(backoff)

        return ProcessingResult(
            state=MessageState.FAILED,
            message_id=message_id,
            order_uid=order.order_uid,
            failure=FailureKind.STORAGE_UNAVAILABLE,
            acknowledged=False,
        )

    def _dead_letter(self, message, order_logger: CorrelationAdapter) -> bool:
        """Move the message to the dead-letter topic. Returns True once acked."""
        try:
            self.queue.publish(self.config.kafka_topic_dead_letter, message.data, key=message.key)
            message.ack()
        except (PublishUnavailable, SubscriptionUnavailable) as e:
            order_logger.error(
                "Dead-lettering failed, keeping message for redelivery",
                extra={"message_id": message.message_id, "error": str(e)},
            )
            return False

        self.messages_dead_lettered += 1
        order_logger.error(
            "Message dead-lettered after exhausting retries",
            extra={
                "message_id": message.message_id,
                "dead_letter_topic": self.config.kafka_topic_dead_letter,
                "attempts": self.config.dead_letter_after,
            },
        )
        return True

    def _backoff(self, attempt: int) -> None:
        self._stop_event.wait(self.config.backoff_seconds(attempt))

    def _log_metrics(self) -> None:
        self.logger.info(
            "Consumer shutting down",
            extra={
                "messages_processed": self.messages_processed,
                "messages_failed": self.messages_failed,
                "messages_dropped": self.messages_dropped,
                "messages_retried": self.messages_retried,
                "messages_dead_lettered": self.messages_dead_lettered,
                "idle_polls": self.idle_polls,
            },
        )
