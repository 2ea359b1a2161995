"""
Durable Queue Adapter (Kafka)

This module wraps confluent-kafka behind the small surface the pipeline needs:

    publish(subject, bytes)       → returns once the broker acknowledged
    subscribe(subject)            → lazy, restartable stream of QueuedMessages
    QueuedMessage.ack() / .nak()  → commit / rewind one message
    read_one(subject, timeout)    → demo read path, bounded wait, no group join

MAPPING TO KAFKA:
┌──────────────────────┬──────────────────────────────────────────────────┐
│ Pipeline concept     │ Kafka mechanism                                  │
├──────────────────────┼──────────────────────────────────────────────────┤
│ subject / stream     │ topic ("foo", "orders", "orders.dlq")            │
│ durable append       │ idempotent producer, acks=all, delivery report   │
│ subscription         │ one Consumer in a consumer group                 │
│ ack                  │ synchronous commit of message offset + 1         │
│ nak (redeliver)      │ seek back to the message offset                  │
│ idle window          │ poll() returning None                            │
└──────────────────────┴──────────────────────────────────────────────────┘

AT-LEAST-ONCE DELIVERY:
- enable.auto.commit is False; nothing is committed until ack()
- A message consumed but not acknowledged before a crash is redelivered
  to the next subscriber session in the same group
- Within one partition message order equals publish order. Order payloads
  are keyed by order_uid, so all versions of one order share a partition.

THREAD SAFETY:
- The Producer is thread-safe and shared by every publisher
- Each subscription owns a dedicated Consumer, used by a single thread
"""

import logging
import threading
import time
from typing import Dict, Iterable, Iterator, List, Optional

from confluent_kafka import (
    OFFSET_BEGINNING,
    OFFSET_END,
    Consumer,
    KafkaError,
    KafkaException,
    Message,
    Producer,
    TopicPartition,
)
from confluent_kafka.admin import AdminClient, NewTopic

from src.shared.errors import PublishUnavailable, QueueUnavailable, SubscriptionUnavailable

# Client errors after which a subscription cannot make progress
FATAL_ERROR_CODES = {
    KafkaError._ALL_BROKERS_DOWN,
    KafkaError._AUTHENTICATION,
    KafkaError.TOPIC_AUTHORIZATION_FAILED,
    KafkaError.GROUP_AUTHORIZATION_FAILED,
}


# ==============================================================================
# QUEUED MESSAGE (payload + its ack handle)
# ==============================================================================


class QueuedMessage:
    """
    A received message together with its acknowledgment handle.

    Attributes:
        data: Message value (bytes)
        key: Message key (bytes or None)
        subject: Topic the message was read from
        message_id: "topic:partition:offset", stable across redeliveries
    """

    def __init__(self, consumer: Consumer, message: Message):
        self._consumer = consumer
        self._message = message
        self.data: bytes = message.value() or b""
        self.key: Optional[bytes] = message.key()
        self.subject: str = message.topic()
        self.partition: int = message.partition()
        self.offset: int = message.offset()

    @property
    def message_id(self) -> str:
        return f"{self.subject}:{self.partition}:{self.offset}"

    def ack(self) -> None:
        """
        Commit this message so the group never receives it again.

        Raises:
            SubscriptionUnavailable: Commit failed; the message will be redelivered
        """
        try:
            self._consumer.commit(message=self._message, asynchronous=False)
        except (KafkaException, RuntimeError) as e:
            raise SubscriptionUnavailable(f"Failed to commit {self.message_id}: {e}") from e

    def nak(self) -> None:
        """
        Rewind the subscription so this message is delivered again.

        Raises:
            SubscriptionUnavailable: Seek failed
        """
        try:
            self._consumer.seek(TopicPartition(self.subject, self.partition, self.offset))
        except (KafkaException, RuntimeError) as e:
            raise SubscriptionUnavailable(f"Failed to rewind to {self.message_id}: {e}") from e

    def __repr__(self) -> str:
        return f"<QueuedMessage({self.message_id}, {len(self.data)} bytes)>"


# ==============================================================================
# SUBSCRIPTION
# ==============================================================================


class KafkaSubscription:
    """
    Subscription to a single topic.

    fetch() is the primitive: one bounded wait for one message. Iterating the
    subscription yields messages forever, skipping idle windows.
    """

    def __init__(self, consumer: Consumer, subject: str, poll_timeout: float = 1.0):
        self.consumer = consumer
        self.subject = subject
        self.poll_timeout = poll_timeout
        self.logger = logging.getLogger(__name__)
        self.closed = False

    def fetch(self, timeout: Optional[float] = None) -> Optional[QueuedMessage]:
        """
        Wait up to ``timeout`` seconds for the next message.

        Returns:
            QueuedMessage, or None when nothing arrived (idle window)

        Raises:
            SubscriptionUnavailable: Fatal client error
        """
        try:
            msg = self.consumer.poll(timeout=self.poll_timeout if timeout is None else timeout)
        except (KafkaException, RuntimeError) as e:
            raise SubscriptionUnavailable(f"Poll failed on '{self.subject}': {e}") from e

        if msg is None:
            return None

        error = msg.error()
        if error is not None:
            return self._handle_error(error)

        return QueuedMessage(self.consumer, msg)

    def _handle_error(self, error: KafkaError) -> None:
        """
        KAFKA ERROR TYPES:
        - _PARTITION_EOF: caught up with the log (not an error)
        - fatal / auth / all brokers down: subscription cannot continue
        - everything else: logged, reported as an idle window
        """
        if error.code() == KafkaError._PARTITION_EOF:
            self.logger.debug("Reached end of partition", extra={"topic": self.subject})
            return None

        if error.fatal() or error.code() in FATAL_ERROR_CODES:
            raise SubscriptionUnavailable(f"Kafka error on '{self.subject}': {error.str()}")

        self.logger.warning(
            f"Kafka error: {error.str()}",
            extra={"topic": self.subject, "error_code": error.code(), "error_name": error.name()},
        )
        return None

    def __iter__(self) -> Iterator[QueuedMessage]:
        while not self.closed:
            message = self.fetch()
            if message is not None:
                yield message

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.consumer.close()
        except (KafkaException, RuntimeError):
            self.logger.error("Error closing Kafka consumer", exc_info=True)

    def __enter__(self) -> "KafkaSubscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# ==============================================================================
# QUEUE
# ==============================================================================


class KafkaMessageQueue:
    """
    Durable queue backed by Kafka topics.

    Attributes:
        bootstrap_servers: Kafka broker addresses
        client_id: Client identifier used for producer and consumers
        group_id: Default consumer group for subscriptions
        publish_timeout: Seconds to wait for a broker acknowledgment
        producer: Shared confluent_kafka.Producer
    """

    def __init__(
        self,
        bootstrap_servers: str,
        client_id: str = "order-pipeline",
        group_id: str = "order-ingestors",
        auto_offset_reset: str = "earliest",
        publish_timeout: float = 10.0,
        poll_timeout: float = 1.0,
        producer_options: Optional[Dict[str, object]] = None,
    ):
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self.group_id = group_id
        self.auto_offset_reset = auto_offset_reset
        self.publish_timeout = publish_timeout
        self.poll_timeout = poll_timeout
        self.logger = logging.getLogger(__name__)

        producer_config = {
            "bootstrap.servers": bootstrap_servers,
            "client.id": client_id,
            # Idempotence: broker-side dedup of producer retries, implies acks=all
            "enable.idempotence": True,
            "acks": "all",
            "linger.ms": 5,
            # Delivery report fails once this expires, so publish() never hangs
            "message.timeout.ms": int(publish_timeout * 1000),
        }
        producer_config.update(producer_options or {})

        try:
            self.producer = Producer(producer_config)
        except KafkaException as e:
            raise QueueUnavailable(f"Failed to create Kafka producer: {e}") from e

        self.logger.info(
            "Kafka queue initialized",
            extra={"bootstrap_servers": bootstrap_servers, "client_id": client_id},
        )

    # ==========================================================================
    # ADMIN
    # ==========================================================================

    def _admin(self) -> AdminClient:
        return AdminClient({"bootstrap.servers": self.bootstrap_servers})

    def check_connection(self, timeout: float = 10.0) -> List[str]:
        """
        Verify the brokers are reachable.

        Returns:
            Names of existing topics

        Raises:
            QueueUnavailable: Brokers unreachable within timeout
        """
        try:
            metadata = self._admin().list_topics(timeout=timeout)
        except KafkaException as e:
            raise QueueUnavailable(f"Cannot reach Kafka at {self.bootstrap_servers}: {e}") from e
        return list(metadata.topics)

    def ensure_streams(
        self,
        subjects: Iterable[str],
        partitions: int = 1,
        replication_factor: int = 1,
        timeout: float = 10.0,
    ) -> None:
        """
        Create any missing topics. Existing topics are left untouched.

        Raises:
            QueueUnavailable: Brokers unreachable or topic creation failed
        """
        existing = set(self.check_connection(timeout=timeout))
        missing = [subject for subject in subjects if subject not in existing]

        if not missing:
            self.logger.info("Streams already exist", extra={"topics": sorted(existing)})
            return

        futures = self._admin().create_topics(
            [NewTopic(subject, num_partitions=partitions, replication_factor=replication_factor)
             for subject in missing],
            operation_timeout=timeout,
        )

        for subject, future in futures.items():
            try:
                future.result()
                self.logger.info("Stream created", extra={"topic": subject})
            except KafkaException as e:
                if e.args and e.args[0].code() == KafkaError.TOPIC_ALREADY_EXISTS:
                    self.logger.info("Stream already exists", extra={"topic": subject})
                    continue
                raise QueueUnavailable(f"Failed to create stream '{subject}': {e}") from e

    # ==========================================================================
    # PUBLISH
    # ==========================================================================

    def publish(self, subject: str, data: bytes, key: Optional[bytes] = None) -> None:
        """
        Append a message and wait for the broker acknowledgment.

        Args:
            subject: Topic name
            data: Message value
            key: Partition key (same key → same partition → FIFO)

        Raises:
            PublishUnavailable: Not confirmed as durably appended. Callers must
                not assume the message was persisted.
        """
        delivered = threading.Event()
        report: Dict[str, object] = {}

        def on_delivery(err: Optional[KafkaError], msg: Message) -> None:
            report["error"] = err
            if err is None:
                report["partition"] = msg.partition()
                report["offset"] = msg.offset()
            delivered.set()

        try:
            self.producer.produce(subject, value=data, key=key, on_delivery=on_delivery)
        except BufferError as e:
            raise PublishUnavailable(f"Producer buffer full publishing to '{subject}'") from e
        except KafkaException as e:
            raise PublishUnavailable(f"Kafka error publishing to '{subject}': {e}") from e

        # Serve delivery reports until ours arrives (another thread may serve it)
        deadline = time.monotonic() + self.publish_timeout
        while not delivered.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise PublishUnavailable(
                    f"Publish to '{subject}' not acknowledged within {self.publish_timeout}s"
                )
            self.producer.poll(min(remaining, 0.1))

        error = report.get("error")
        if error is not None:
            raise PublishUnavailable(f"Delivery to '{subject}' failed: {error.str()}")

        self.logger.debug(
            "Message appended",
            extra={"topic": subject, "partition": report.get("partition"), "offset": report.get("offset")},
        )

    # ==========================================================================
    # SUBSCRIBE
    # ==========================================================================

    def _consumer(self, group_id: str) -> Consumer:
        try:
            return Consumer(
                {
                    "bootstrap.servers": self.bootstrap_servers,
                    "group.id": group_id,
                    "client.id": self.client_id,
                    "auto.offset.reset": self.auto_offset_reset,
                    "enable.auto.commit": False,
                }
            )
        except KafkaException as e:
            raise SubscriptionUnavailable(f"Failed to create Kafka consumer: {e}") from e

    def subscribe(self, subject: str, group_id: Optional[str] = None) -> KafkaSubscription:
        """
        Open a subscription in ``group_id`` (default: the queue's group).

        Messages not acknowledged by a previous session of the same group are
        delivered again, starting from the last committed offset.
        """
        group_id = group_id or self.group_id
        consumer = self._consumer(group_id)

        try:
            consumer.subscribe([subject])
        except KafkaException as e:
            consumer.close()
            raise SubscriptionUnavailable(f"Failed to subscribe to '{subject}': {e}") from e

        self.logger.info("Subscribed", extra={"topic": subject, "group_id": group_id})
        return KafkaSubscription(consumer, subject, poll_timeout=self.poll_timeout)

    def read_one(self, subject: str, timeout: float) -> Optional[bytes]:
        """
        Wait up to ``timeout`` seconds for one message and acknowledge it.

        Uses a dedicated reader group, so each call returns the next message
        not yet read through this path. Partitions are assigned directly from
        the group's committed offsets: there is no group join, so the wait
        is spent fetching rather than rebalancing.

        Returns:
            Message value, or None when no message is available
        """
        deadline = time.monotonic() + timeout
        subscription = KafkaSubscription(
            self._consumer(f"{self.group_id}-readers"), subject, poll_timeout=self.poll_timeout
        )
        try:
            if not self._assign_from_committed(subscription.consumer, subject, deadline):
                return None
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                message = subscription.fetch(timeout=remaining)
                if message is not None:
                    message.ack()
                    return message.data
        finally:
            subscription.close()

    def _assign_from_committed(self, consumer: Consumer, subject: str, deadline: float) -> bool:
        """
        Assign every partition of ``subject`` at the group's committed offset.

        Partitions without a commit start according to auto_offset_reset.
        Returns False when the topic does not exist.
        """
        try:
            metadata = consumer.list_topics(subject, timeout=max(deadline - time.monotonic(), 0.1))
            topic = metadata.topics.get(subject)
            if topic is None or topic.error is not None:
                self.logger.debug("Topic not available for reading", extra={"topic": subject})
                return False

            partitions = [TopicPartition(subject, p) for p in sorted(topic.partitions)]
            positions = consumer.committed(partitions, timeout=max(deadline - time.monotonic(), 0.1))

            reset = OFFSET_BEGINNING if self.auto_offset_reset == "earliest" else OFFSET_END
            for position in positions:
                if position.offset < 0:
                    position.offset = reset

            consumer.assign(positions)
        except KafkaException as e:
            raise SubscriptionUnavailable(f"Failed to assign '{subject}': {e}") from e
        return True

    def close(self, timeout: float = 10.0) -> None:
        """Flush pending messages before shutdown."""
        remaining = self.producer.flush(timeout=timeout)
        if remaining > 0:
            self.logger.warning(
                f"Producer closed with {remaining} messages undelivered",
                extra={"remaining_messages": remaining},
            )
        self.logger.info("Kafka queue closed")
