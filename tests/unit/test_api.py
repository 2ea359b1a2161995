"""
Unit Tests for the HTTP Service

Runs the FastAPI app through TestClient with the in-memory queue and a
SQLite-backed store wired in place of Kafka and PostgreSQL.
"""

import json
import time

import pytest
from fastapi.testclient import TestClient

from src.api.app import create_app, wire_services
from src.consumer.database import DatabaseManager, OrderStore
from src.shared.errors import StorageUnavailable


class _UnavailableStore:
    def upsert(self, order) -> None:
        raise StorageUnavailable("connection refused")

    def fetch_by_id(self, order_uid: str):
        raise StorageUnavailable("connection refused")

    def fetch_all(self):
        raise StorageUnavailable("connection refused")


class _DownDatabase:
    def check_health(self) -> bool:
        return False


@pytest.fixture
def services(api_config, memory_queue, order_store, db_manager):
    return wire_services(api_config, memory_queue, order_store, db_manager)


@pytest.fixture
def client(services):
    with TestClient(create_app(services=services)) as test_client:
        yield test_client


def drain(services) -> None:
    """Process every queued order synchronously."""
    subscription = services.queue.subscribe(services.config.kafka_topic_orders)
    while services.consumer.poll_once(subscription) is not None:
        pass


# ==============================================================================
# /publish AND /read
# ==============================================================================


@pytest.mark.unit
def test_publish_message(client, memory_queue):
    response = client.get("/publish", params={"message": "hello"})

    assert response.status_code == 200
    assert response.text == "Published message: hello"
    assert memory_queue.messages("foo") == [b"hello"]


@pytest.mark.unit
@pytest.mark.parametrize("params", [{}, {"message": ""}])
def test_publish_requires_message(client, params):
    response = client.get("/publish", params=params)

    assert response.status_code == 400


@pytest.mark.unit
def test_publish_failure_is_500(client, memory_queue):
    memory_queue.fail_publish = True

    response = client.get("/publish", params={"message": "hello"})

    assert response.status_code == 500


@pytest.mark.unit
def test_read_on_empty_subject_times_out_with_504(client, api_config):
    started = time.monotonic()

    response = client.get("/read")

    assert response.status_code == 504
    assert response.text == "No messages available"
    assert time.monotonic() - started < api_config.read_timeout_seconds + 1.0


@pytest.mark.unit
def test_publish_then_read(client):
    client.get("/publish", params={"message": "ping"})

    response = client.get("/read")

    assert response.status_code == 200
    assert response.text == "Received a message: ping"
    assert client.get("/read").status_code == 504


# ==============================================================================
# POST /order
# ==============================================================================


@pytest.mark.unit
def test_submit_order_is_queued(client, memory_queue, sample_payload):
    response = client.post("/order", content=sample_payload)

    assert response.status_code == 200
    assert response.json() == {"order_uid": "b563feb7b2b84b6test", "status": "queued"}
    assert len(memory_queue.messages("orders")) == 1


@pytest.mark.unit
@pytest.mark.parametrize(
    "body",
    [b"not json", b"{}", b'{"order_uid": "abc123", "payment": {}}', b""],
)
def test_submit_malformed_order_is_400(client, memory_queue, body):
    response = client.post("/order", content=body)

    assert response.status_code == 400
    assert memory_queue.messages("orders") == []


@pytest.mark.unit
def test_submit_invalid_field_is_400_naming_field(client, sample_order_data):
    sample_order_data["payment"]["amount"] = -1

    response = client.post("/order", content=json.dumps(sample_order_data))

    assert response.status_code == 400
    assert "payment.amount" in response.json()["detail"]


@pytest.mark.unit
def test_submit_publish_failure_is_500(client, memory_queue, sample_payload):
    memory_queue.fail_publish = True

    response = client.post("/order", content=sample_payload)

    assert response.status_code == 500


# ==============================================================================
# GET /order/{order_uid} AND /orders
# ==============================================================================


@pytest.mark.unit
def test_submitted_order_without_items_reads_back_with_empty_list(client, services):
    body = {"order_uid": "abc123", "delivery": {"name": "A"}, "payment": {"amount": 100}}
    assert client.post("/order", json=body).status_code == 200

    drain(services)
    response = client.get("/order/abc123")

    assert response.status_code == 200
    assert response.json()["order_uid"] == "abc123"
    assert response.json()["items"] == []
    assert response.json()["payment"]["amount"] == 100


@pytest.mark.unit
def test_full_order_round_trip(client, services, sample_payload, sample_order):
    client.post("/order", content=sample_payload)
    drain(services)

    response = client.get(f"/order/{sample_order.order_uid}")

    assert response.status_code == 200
    assert response.json() == sample_order.to_wire()


@pytest.mark.unit
def test_unknown_order_is_404(client):
    response = client.get("/order/does-not-exist")

    assert response.status_code == 404


@pytest.mark.unit
@pytest.mark.parametrize("path", ["/order/", "/order/%20"])
def test_empty_order_id_is_400(client, path):
    assert client.get(path).status_code == 400


@pytest.mark.unit
def test_list_orders(client, services, sample_order_data):
    assert client.get("/orders").json() == []

    for uid in ("b", "a"):
        sample_order_data["order_uid"] = uid
        client.post("/order", content=json.dumps(sample_order_data))
    drain(services)

    response = client.get("/orders")

    assert response.status_code == 200
    assert [order["order_uid"] for order in response.json()] == ["a", "b"]


@pytest.mark.unit
@pytest.mark.parametrize("path", ["/order/abc123", "/orders"])
def test_storage_unavailable_is_503(api_config, memory_queue, path):
    services = wire_services(api_config, memory_queue, _UnavailableStore())

    with TestClient(create_app(services=services)) as client:
        response = client.get(path)

    assert response.status_code == 503


# ==============================================================================
# BACKGROUND CONSUMER AND HEALTH
# ==============================================================================


@pytest.mark.unit
def test_health_with_consumer_disabled(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["database"] == "ok"
    assert response.json()["consumer"] == "disabled"


@pytest.mark.unit
def test_health_reports_database_down_with_503(api_config, memory_queue, order_store):
    services = wire_services(api_config, memory_queue, order_store, _DownDatabase())

    with TestClient(create_app(services=services)) as client:
        response = client.get("/health")

    assert response.status_code == 503
    assert response.json()["database"] == "unavailable"
    assert response.json()["status"] == "degraded"
    assert "detail" not in response.json()


@pytest.mark.unit
def test_background_consumer_materializes_orders(api_config, memory_queue, sample_payload, tmp_path):
    # File database: the consumer thread and request threads get separate connections
    config = api_config.model_copy(
        update={"run_consumer": True, "database_url": f"sqlite:///{tmp_path / 'orders.db'}"}
    )
    db_manager = DatabaseManager(config)
    db_manager.create_schema()
    services = wire_services(config, memory_queue, OrderStore(db_manager), db_manager)

    with TestClient(create_app(services=services)) as client:
        assert client.get("/health").json()["consumer"] == "running"
        client.post("/order", content=sample_payload)

        response = None
        for _ in range(200):
            response = client.get("/order/b563feb7b2b84b6test")
            if response.status_code == 200:
                break
            time.sleep(0.01)

        assert response.status_code == 200
        assert response.json()["items"][0]["name"] == "Mascaras"

    assert services.consumer.running is False
    db_manager.close()
