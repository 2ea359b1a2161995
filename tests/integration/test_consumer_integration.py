"""
Integration Tests for Storage and the Ingestion Consumer

Runs OrderStore against PostgreSQL (JSONB columns, ON CONFLICT upsert) and
the consumer against real Kafka + PostgreSQL containers.
"""

import json
import threading
import time

import pytest
from sqlalchemy import text

from src.consumer.consumer import OrderConsumer
from src.consumer.database import OrderStore, init_database
from src.consumer.main import build_queue
from src.shared.errors import NotFound

# ==============================================================================
# POSTGRESQL STORAGE
# ==============================================================================


@pytest.mark.integration
def test_postgres_upsert_and_fetch(postgres_store, sample_order):
    postgres_store.upsert(sample_order)

    assert postgres_store.fetch_by_id(sample_order.order_uid) == sample_order


@pytest.mark.integration
def test_postgres_upsert_is_idempotent(postgres_store, sample_order):
    postgres_store.upsert(sample_order)
    with postgres_store.db_manager.get_session() as session:
        first = session.execute(text("SELECT processed_at FROM orders")).scalar_one()

    postgres_store.upsert(sample_order)
    with postgres_store.db_manager.get_session() as session:
        rows = session.execute(text("SELECT processed_at FROM orders")).all()

    assert len(rows) == 1
    assert rows[0][0] == first


@pytest.mark.integration
def test_postgres_nested_documents_are_jsonb(postgres_store, sample_order):
    postgres_store.upsert(sample_order)

    with postgres_store.db_manager.get_session() as session:
        brand = session.execute(
            text("SELECT items->0->>'brand' FROM orders WHERE order_uid = :uid"),
            {"uid": sample_order.order_uid},
        ).scalar_one()

    assert brand == "Vivienne Sabo"


@pytest.mark.integration
def test_postgres_last_write_wins(postgres_store, sample_order):
    postgres_store.upsert(sample_order)
    postgres_store.upsert(sample_order.model_copy(update={"items": [], "track_number": "V2"}))

    stored = postgres_store.fetch_by_id(sample_order.order_uid)

    assert stored.items == []
    assert stored.track_number == "V2"


@pytest.mark.integration
def test_postgres_fetch_missing(postgres_store):
    with pytest.raises(NotFound):
        postgres_store.fetch_by_id("does-not-exist")


# ==============================================================================
# CONSUMER AGAINST KAFKA + POSTGRESQL
# ==============================================================================


@pytest.fixture
def pipeline(consumer_config, empty_orders_table):
    db_manager = init_database(consumer_config)
    queue = build_queue(consumer_config)
    queue.ensure_streams([consumer_config.kafka_topic_orders, consumer_config.kafka_topic_dead_letter])
    store = OrderStore(db_manager)
    consumer = OrderConsumer(consumer_config, queue, store)

    yield consumer

    queue.close()
    with db_manager.get_session() as session:
        session.execute(text("DELETE FROM orders"))
    db_manager.close()


def run_until(consumer, predicate, timeout=30.0):
    thread = threading.Thread(target=consumer.start)
    thread.start()
    deadline = time.monotonic() + timeout
    try:
        while time.monotonic() < deadline and not predicate():
            time.sleep(0.1)
    finally:
        consumer.stop()
        thread.join(timeout=10)


@pytest.mark.integration
@pytest.mark.slow
def test_consumer_materializes_published_orders(pipeline, sample_order_data):
    topic = pipeline.config.kafka_topic_orders
    for uid in ("order-1", "order-2", "order-3"):
        sample_order_data["order_uid"] = uid
        pipeline.queue.publish(topic, json.dumps(sample_order_data).encode(), key=uid.encode())

    run_until(pipeline, lambda: pipeline.messages_processed == 3)

    assert [o.order_uid for o in pipeline.store.fetch_all()] == ["order-1", "order-2", "order-3"]


@pytest.mark.integration
@pytest.mark.slow
def test_consumer_skips_poison_message(pipeline, sample_payload):
    topic = pipeline.config.kafka_topic_orders
    pipeline.queue.publish(topic, b"{definitely not json")
    pipeline.queue.publish(topic, sample_payload)

    run_until(pipeline, lambda: pipeline.messages_processed == 1)

    assert pipeline.messages_dropped == 1
    assert pipeline.store.fetch_by_id("b563feb7b2b84b6test")


@pytest.mark.integration
@pytest.mark.slow
def test_restarted_consumer_does_not_reprocess_acked_messages(pipeline, sample_payload):
    topic = pipeline.config.kafka_topic_orders
    pipeline.queue.publish(topic, sample_payload)
    run_until(pipeline, lambda: pipeline.messages_processed == 1)

    restarted = OrderConsumer(pipeline.config, pipeline.queue, pipeline.store)
    run_until(restarted, lambda: restarted.idle_polls >= 4, timeout=10.0)

    assert restarted.messages_processed == 0
