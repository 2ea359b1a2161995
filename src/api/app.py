"""
HTTP Service (FastAPI)

Exposes the submission and query gateways over HTTP and runs the ingestion
consumer in a background thread of the same process.

ROUTES:
┌──────────────────────────┬──────────────────────────────────────────────┐
│ GET  /publish?message=   │ publish a text message to the demo topic     │
│ GET  /read               │ wait (bounded) for one demo message          │
│ POST /order              │ validate + queue an order                    │
│ GET  /order/{order_uid}  │ one stored order                             │
│ GET  /orders             │ every stored order                           │
│ GET  /health             │ database and consumer status                 │
└──────────────────────────┴──────────────────────────────────────────────┘

ERROR MAPPING:
- MalformedPayload / InvalidField / ConstraintViolation → 400
- NotFound                                              → 404
- PublishUnavailable / QueueUnavailable                 → 500
- StorageUnavailable                                    → 503

SERVICE WIRING:
- build_services() connects to the database and Kafka eagerly, before the
  server accepts requests; any failure aborts startup
- The resulting PipelineServices is immutable and stored on app.state;
  routes only read from it
"""

import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse

from src.api.config import ApiConfig
from src.api.queries import OrderQueryService
from src.consumer.consumer import OrderConsumer
from src.consumer.database import DatabaseManager, OrderStore, init_database
from src.producer.producer import OrderProducer
from src.shared.errors import (
    ConstraintViolation,
    ConsumerHalted,
    InvalidField,
    MalformedPayload,
    NotFound,
    PublishUnavailable,
    QueueUnavailable,
    StorageUnavailable,
)
from src.shared.queue import KafkaMessageQueue

logger = logging.getLogger(__name__)

CONSUMER_JOIN_TIMEOUT = 30.0


# ==============================================================================
# SERVICE WIRING
# ==============================================================================


@dataclass(frozen=True)
class PipelineServices:
    """Every long-lived handle the HTTP service needs, built once at startup."""

    config: ApiConfig
    queue: Any
    db_manager: Optional[DatabaseManager]
    store: Any
    producer: OrderProducer
    queries: OrderQueryService
    consumer: OrderConsumer


def build_services(config: ApiConfig) -> PipelineServices:
    """
    Connect to the database and Kafka and wire the gateways.

    Raises:
        RuntimeError: Database unreachable or schema creation failed
        QueueUnavailable: Kafka unreachable or stream creation failed
    """
    db_manager = init_database(config)

    try:
        queue = KafkaMessageQueue(
            config.kafka_bootstrap_servers,
            client_id=config.consumer_client_id,
            group_id=config.consumer_group_id,
            auto_offset_reset=config.consumer_auto_offset_reset,
            publish_timeout=config.publish_timeout_seconds,
            poll_timeout=config.poll_timeout_seconds,
        )
        queue.ensure_streams(
            [config.kafka_topic_messages, config.kafka_topic_orders, config.kafka_topic_dead_letter],
            partitions=config.kafka_topic_partitions,
            replication_factor=config.kafka_replication_factor,
        )
    except QueueUnavailable:
        db_manager.close()
        raise

    return wire_services(config, queue, OrderStore(db_manager), db_manager)


def wire_services(
    config: ApiConfig, queue, store, db_manager: Optional[DatabaseManager] = None
) -> PipelineServices:
    """Build the gateways and the consumer around already connected adapters."""
    return PipelineServices(
        config=config,
        queue=queue,
        db_manager=db_manager,
        store=store,
        producer=OrderProducer(queue, topic=config.kafka_topic_orders),
        queries=OrderQueryService(store),
        consumer=OrderConsumer(config, queue, store),
    )


def _run_consumer(consumer: OrderConsumer) -> None:
    try:
        consumer.start()
    except ConsumerHalted:
        # Logged by the consumer; /health reports it as stopped
        pass


# ==============================================================================
# ERROR MAPPING
# ==============================================================================


def _raise_pipeline_http_error(e: Exception) -> None:
    if isinstance(e, InvalidField):
        raise HTTPException(status_code=400, detail=f"Invalid field '{e.field}': {e}") from e

    if isinstance(e, (MalformedPayload, ConstraintViolation)):
        raise HTTPException(status_code=400, detail=str(e)) from e

    if isinstance(e, NotFound):
        raise HTTPException(status_code=404, detail=f"Order '{e.order_uid}' not found") from e

    if isinstance(e, StorageUnavailable):
        raise HTTPException(status_code=503, detail="Storage unavailable") from e

    if isinstance(e, PublishUnavailable):
        raise HTTPException(status_code=500, detail=f"Failed to publish: {e}") from e

    if isinstance(e, QueueUnavailable):
        raise HTTPException(status_code=500, detail=f"Queue unavailable: {e}") from e

    raise HTTPException(status_code=500, detail="Internal Server Error") from e


# ==============================================================================
# ROUTES
# ==============================================================================

router = APIRouter()


def get_services(request: Request) -> PipelineServices:
    return request.app.state.services


@router.get("/publish", response_class=PlainTextResponse)
def publish_message(
    message: Optional[str] = Query(default=None),
    services: PipelineServices = Depends(get_services),
) -> str:
    if not message:
        raise HTTPException(status_code=400, detail="Query parameter 'message' is required")

    try:
        services.queue.publish(services.config.kafka_topic_messages, message.encode("utf-8"))
    except QueueUnavailable as e:
        _raise_pipeline_http_error(e)

    return f"Published message: {message}"


@router.get("/read", response_class=PlainTextResponse)
def read_message(services: PipelineServices = Depends(get_services)):
    try:
        data = services.queue.read_one(
            services.config.kafka_topic_messages, timeout=services.config.read_timeout_seconds
        )
    except QueueUnavailable as e:
        _raise_pipeline_http_error(e)

    if data is None:
        return PlainTextResponse("No messages available", status_code=504)

    return f"Received a message: {data.decode('utf-8', errors='replace')}"


@router.post("/order")
async def submit_order(
    request: Request, services: PipelineServices = Depends(get_services)
) -> Dict[str, str]:
    body = await request.body()

    try:
        order_uid = await run_in_threadpool(services.producer.submit, body)
    except Exception as e:
        _raise_pipeline_http_error(e)

    return {"order_uid": order_uid, "status": "queued"}


@router.get("/order/")
def get_order_without_id(services: PipelineServices = Depends(get_services)) -> Dict[str, Any]:
    return get_order("", services)


@router.get("/order/{order_uid}")
def get_order(order_uid: str, services: PipelineServices = Depends(get_services)) -> Dict[str, Any]:
    try:
        return services.queries.get_by_id(order_uid)
    except Exception as e:
        _raise_pipeline_http_error(e)


@router.get("/orders")
def list_orders(services: PipelineServices = Depends(get_services)) -> List[Dict[str, Any]]:
    try:
        return services.queries.get_all()
    except Exception as e:
        _raise_pipeline_http_error(e)


@router.get("/health")
def health(request: Request, services: PipelineServices = Depends(get_services)):
    database_ok = services.db_manager.check_health() if services.db_manager is not None else True

    thread = getattr(request.app.state, "consumer_thread", None)
    if not services.config.run_consumer:
        consumer_status = "disabled"
    elif thread is not None and thread.is_alive():
        consumer_status = "running"
    else:
        consumer_status = "stopped"

    body = {
        "status": "ok" if database_ok else "degraded",
        "database": "ok" if database_ok else "unavailable",
        "consumer": consumer_status,
        "messages_processed": services.consumer.messages_processed,
    }
    if not database_ok:
        return JSONResponse(body, status_code=503)
    return body


# ==============================================================================
# APPLICATION FACTORY
# ==============================================================================


def create_app(
    config: Optional[ApiConfig] = None, services: Optional[PipelineServices] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Service configuration (ignored when services is given)
        services: Pre-wired services; when None they are built from config
            during startup and closed on shutdown
    """
    owns_services = services is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal services
        if services is None:
            services = build_services(config or ApiConfig())
        app.state.services = services
        app.state.consumer_thread = None

        if services.config.run_consumer:
            thread = threading.Thread(
                target=_run_consumer, args=(services.consumer,), name="order-consumer", daemon=True
            )
            thread.start()
            app.state.consumer_thread = thread
            logger.info("Background consumer started")

        try:
            yield
        finally:
            if app.state.consumer_thread is not None:
                services.consumer.stop()
                app.state.consumer_thread.join(timeout=CONSUMER_JOIN_TIMEOUT)
                if app.state.consumer_thread.is_alive():
                    logger.warning("Consumer thread did not stop in time")

            if owns_services:
                services.queue.close()
                if services.db_manager is not None:
                    services.db_manager.close()
                services = None

    app = FastAPI(title="Order Pipeline API", lifespan=lifespan)
    app.include_router(router)
    return app
