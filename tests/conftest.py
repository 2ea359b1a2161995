"""
Pytest Configuration and Shared Fixtures

FIXTURE FAMILIES:
- Containers (integration): real Kafka and PostgreSQL via testcontainers,
  started once per session
- In-process (unit): SQLite-backed OrderStore and an in-memory queue with
  the same publish / subscribe / ack / nak surface as KafkaMessageQueue
- Sample data: a canonical order payload

FIXTURE SCOPES:
- session: Created once for entire test session (containers)
- function: Created for each test function (stores, queues, configs)
"""

import json
import os
import threading
import time
from collections import defaultdict
from typing import Dict, Generator, List, Optional, Tuple

import pytest
from sqlalchemy import text
from testcontainers.kafka import KafkaContainer
from testcontainers.postgres import PostgresContainer

from src.api.config import ApiConfig
from src.consumer.config import ConsumerConfig
from src.consumer.database import DatabaseManager, OrderStore
from src.consumer.models import Base
from src.producer.config import ProducerConfig
from src.shared.errors import PublishUnavailable, StorageUnavailable, SubscriptionUnavailable
from src.shared.models import Order

# ==============================================================================
# POSTGRESQL FIXTURES
# ==============================================================================


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """PostgreSQL testcontainer shared by the whole session."""
    with PostgresContainer("postgres:15") as postgres:
        postgres.get_connection_url()
        yield postgres


@pytest.fixture(scope="function")
def postgres_url(postgres_container) -> str:
    """psycopg2 URL of the container database."""
    return postgres_container.get_connection_url().replace("+psycopg2", "")


@pytest.fixture(scope="function")
def postgres_store(postgres_url) -> Generator[OrderStore, None, None]:
    """OrderStore on a freshly created orders table, dropped afterwards."""
    config = ConsumerConfig(database_url=postgres_url)
    db_manager = DatabaseManager(config)
    db_manager.create_schema()

    try:
        yield OrderStore(db_manager)
    finally:
        Base.metadata.drop_all(db_manager.engine)
        db_manager.close()


@pytest.fixture(scope="function")
def empty_orders_table(postgres_url) -> None:
    """Orders table exists and holds no rows left over from earlier tests."""
    db_manager = DatabaseManager(ConsumerConfig(database_url=postgres_url))
    db_manager.create_schema()
    with db_manager.get_session() as session:
        session.execute(text("DELETE FROM orders"))
    db_manager.close()


# ==============================================================================
# KAFKA FIXTURES
# ==============================================================================


@pytest.fixture(scope="session")
def kafka_container() -> Generator[KafkaContainer, None, None]:
    """Kafka testcontainer shared by the whole session."""
    with KafkaContainer() as kafka:
        kafka.get_bootstrap_server()
        yield kafka


@pytest.fixture(scope="function")
def unique_suffix() -> str:
    """Per-test suffix so topics and consumer groups never collide."""
    return str(time.time_ns())


@pytest.fixture(scope="function")
def consumer_config(kafka_container, postgres_url, unique_suffix) -> ConsumerConfig:
    """ConsumerConfig pointing to the test containers."""
    return ConsumerConfig(
        kafka_bootstrap_servers=kafka_container.get_bootstrap_server(),
        kafka_topic_orders=f"test-orders-{unique_suffix}",
        kafka_topic_dead_letter=f"test-orders-{unique_suffix}.dlq",
        consumer_group_id=f"test-ingestors-{unique_suffix}",
        database_url=postgres_url,
        poll_timeout_seconds=0.5,
        retry_backoff_ms=10,
        max_backoff_ms=50,
    )


@pytest.fixture(scope="function")
def producer_config(kafka_container, unique_suffix) -> ProducerConfig:
    """ProducerConfig pointing to the test Kafka container."""
    return ProducerConfig(
        kafka_bootstrap_servers=kafka_container.get_bootstrap_server(),
        kafka_topic_orders=f"test-orders-{unique_suffix}",
        producer_client_id="test-producer",
        producer_rate=20,
        producer_duration=1,
        mock_seed=42,
    )


# ==============================================================================
# IN-PROCESS DOUBLES
# ==============================================================================


class InMemoryMessage:
    def __init__(self, subscription: "InMemorySubscription", offset: int, key, data: bytes):
        self._subscription = subscription
        self.subject = subscription.subject
        self.partition = 0
        self.offset = offset
        self.key = key
        self.data = data
        self.fail_ack = False

    @property
    def message_id(self) -> str:
        return f"{self.subject}:{self.partition}:{self.offset}"

    def ack(self) -> None:
        if self.fail_ack or self._subscription.queue.fail_acks:
            raise SubscriptionUnavailable(f"ack of {self.message_id} failed")
        self._subscription.commit(self.offset + 1)

    def nak(self) -> None:
        self._subscription.position = self.offset


class InMemorySubscription:
    def __init__(self, queue: "InMemoryQueue", subject: str, group_id: str):
        self.queue = queue
        self.subject = subject
        self.group_id = group_id
        self.position = queue.committed[(subject, group_id)]
        self.closed = False

    def commit(self, offset: int) -> None:
        key = (self.subject, self.group_id)
        with self.queue.condition:
            self.queue.committed[key] = max(self.queue.committed[key], offset)

    def fetch(self, timeout: Optional[float] = None) -> Optional[InMemoryMessage]:
        if self.queue.fail_fetches > 0:
            self.queue.fail_fetches -= 1
            raise SubscriptionUnavailable("broker down")

        deadline = time.monotonic() + (0.05 if timeout is None else timeout)
        with self.queue.condition:
            log = self.queue.logs[self.subject]
            while self.position >= len(log):
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self.queue.condition.wait(remaining)
            key, data = log[self.position]
            message = InMemoryMessage(self, self.position, key, data)
            self.position += 1
            return message

    def close(self) -> None:
        self.closed = True


class InMemoryQueue:
    """
    Queue double with Kafka-like semantics: per-subject append-only logs,
    per-group committed offsets, sessions that resume from the last commit.
    """

    def __init__(self, group_id: str = "order-ingestors"):
        self.group_id = group_id
        self.logs: Dict[str, List[Tuple[Optional[bytes], bytes]]] = defaultdict(list)
        self.committed: Dict[Tuple[str, str], int] = defaultdict(int)
        self.condition = threading.Condition()
        self.fail_publish = False
        self.fail_acks = False
        self.fail_fetches = 0
        self.fail_subscribes = 0
        self.closed = False

    def publish(self, subject: str, data: bytes, key: Optional[bytes] = None) -> None:
        if self.fail_publish:
            raise PublishUnavailable(f"publish to '{subject}' not acknowledged")
        with self.condition:
            self.logs[subject].append((key, data))
            self.condition.notify_all()

    def subscribe(self, subject: str, group_id: Optional[str] = None) -> InMemorySubscription:
        if self.fail_subscribes > 0:
            self.fail_subscribes -= 1
            raise SubscriptionUnavailable(f"cannot subscribe to '{subject}'")
        return InMemorySubscription(self, subject, group_id or self.group_id)

    def read_one(self, subject: str, timeout: float) -> Optional[bytes]:
        subscription = self.subscribe(subject, group_id=f"{self.group_id}-readers")
        message = subscription.fetch(timeout=timeout)
        if message is None:
            return None
        message.ack()
        return message.data

    def messages(self, subject: str) -> List[bytes]:
        return [data for _, data in self.logs[subject]]

    def close(self, timeout: float = 10.0) -> None:
        self.closed = True


class FlakyStore:
    """OrderStore wrapper that raises StorageUnavailable for the next N upserts."""

    def __init__(self, store: OrderStore):
        self.store = store
        self.failures_left = 0
        self.upsert_calls = 0

    def fail_next(self, count: int) -> None:
        self.failures_left = count

    def upsert(self, order: Order) -> None:
        self.upsert_calls += 1
        if self.failures_left > 0:
            self.failures_left -= 1
            raise StorageUnavailable("connection refused")
        self.store.upsert(order)

    def fetch_by_id(self, order_uid: str) -> Order:
        return self.store.fetch_by_id(order_uid)

    def fetch_all(self) -> List[Order]:
        return self.store.fetch_all()


@pytest.fixture
def memory_queue() -> InMemoryQueue:
    return InMemoryQueue()


@pytest.fixture
def sqlite_config() -> ConsumerConfig:
    """Consumer settings on an in-memory SQLite database with millisecond backoff."""
    return ConsumerConfig(
        database_url="sqlite:///:memory:",
        poll_timeout_seconds=0.05,
        retry_backoff_ms=1,
        max_backoff_ms=5,
    )


@pytest.fixture
def db_manager(sqlite_config) -> Generator[DatabaseManager, None, None]:
    manager = DatabaseManager(sqlite_config)
    manager.create_schema()
    try:
        yield manager
    finally:
        manager.close()


@pytest.fixture
def order_store(db_manager) -> OrderStore:
    return OrderStore(db_manager)


@pytest.fixture
def flaky_store(order_store) -> FlakyStore:
    return FlakyStore(order_store)


@pytest.fixture
def api_config() -> ApiConfig:
    return ApiConfig(
        database_url="sqlite:///:memory:",
        poll_timeout_seconds=0.05,
        retry_backoff_ms=1,
        max_backoff_ms=5,
        read_timeout_seconds=0.2,
        run_consumer=False,
    )


# ==============================================================================
# SAMPLE DATA FIXTURES
# ==============================================================================


@pytest.fixture
def sample_order_data() -> dict:
    """A valid order payload with one item."""
    return {
        "order_uid": "b563feb7b2b84b6test",
        "track_number": "WBILMTESTTRACK",
        "entry": "WBIL",
        "delivery": {
            "name": "Test Testov",
            "phone": "+9720000000",
            "zip": "2639809",
            "city": "Kiryat Mozkin",
            "address": "Ploshad Mira 15",
            "region": "Kraiot",
            "email": "test@gmail.com",
        },
        "payment": {
            "transaction": "b563feb7b2b84b6test",
            "request_id": "",
            "currency": "USD",
            "provider": "wbpay",
            "amount": 1817,
            "payment_dt": 1637907727,
            "bank": "alpha",
            "delivery_cost": 1500,
            "goods_total": 317,
            "custom_fee": 0,
        },
        "items": [
            {
                "chrt_id": 9934930,
                "track_number": "WBILMTESTTRACK",
                "price": 453,
                "rid": "ab4219087a764ae0btest",
                "name": "Mascaras",
                "sale": 30,
                "size": "0",
                "total_price": 317,
                "nm_id": 2389212,
                "brand": "Vivienne Sabo",
                "status": 202,
            }
        ],
        "locale": "en",
        "internal_signature": "",
        "customer_id": "test",
        "delivery_service": "meest",
        "shardkey": "9",
        "sm_id": 99,
        "date_created": "2021-11-26T06:22:19+00:00",
        "oof_shard": "1",
    }


@pytest.fixture
def sample_order(sample_order_data) -> Order:
    return Order.model_validate(sample_order_data)


@pytest.fixture
def sample_payload(sample_order_data) -> bytes:
    return json.dumps(sample_order_data).encode("utf-8")


# ==============================================================================
# TEST ENVIRONMENT CONFIGURATION
# ==============================================================================


def pytest_configure(config):
    """Set test environment variables and register markers."""
    os.environ["ENVIRONMENT"] = "test"
    os.environ["LOG_LEVEL"] = "DEBUG"

    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires containers)"
    )
    config.addinivalue_line("markers", "slow: mark test as slow (takes more than 5 seconds)")
    config.addinivalue_line("markers", "unit: mark test as unit test (no external dependencies)")
