"""
Standalone Ingestion Consumer - Entry Point

Runs the ingestion consumer as a standalone process (without the HTTP API).

USAGE:
    python -m src.consumer.main [--log-level LEVEL] [--log-format json|text]

STARTUP (fail fast):
1. Load configuration
2. Connect to the database and create the orders table
3. Connect to Kafka and create the 'orders' and dead-letter topics
4. Any failure above → exit code 1, nothing is consumed

GRACEFUL SHUTDOWN:
- SIGINT (Ctrl+C) and SIGTERM (docker stop) stop the loop between messages
- The in-flight message is acked or left for redelivery, never half-done
- Producer flushed, database pool disposed, metrics logged

EXIT CODES:
    0  Stopped by signal
    1  Startup failure, or consumer halted after repeated subscription failures
"""

import argparse
import logging
import signal
import sys
from typing import Optional

from src.consumer.config import ConsumerConfig, load_config
from src.consumer.consumer import OrderConsumer
from src.consumer.database import OrderStore, init_database
from src.shared.errors import ConsumerHalted, QueueUnavailable
from src.shared.logger import setup_logger
from src.shared.queue import KafkaMessageQueue

# Set once the consumer is wired; the signal handler stops it
consumer_instance: Optional[OrderConsumer] = None


def signal_handler(signum: int, frame) -> None:
    """Handle SIGINT/SIGTERM: finish the current message, then exit."""
    logging.getLogger(__name__).info(
        f"{signal.Signals(signum).name} received, stopping after the in-flight message"
    )

    if consumer_instance:
        consumer_instance.stop()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Order Ingestion Consumer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m src.consumer.main
  python -m src.consumer.main --log-level DEBUG --log-format text

Environment Variables:
  KAFKA_BOOTSTRAP_SERVERS    Broker list (default: localhost:9092)
  KAFKA_TOPIC_ORDERS         Topic to consume (default: orders)
  KAFKA_TOPIC_DEAD_LETTER    Dead-letter topic (default: orders.dlq)
  CONSUMER_GROUP_ID          Consumer group (default: order-ingestors)
  DATABASE_URL               Full database URL (overrides POSTGRES_*)
  POSTGRES_HOST              PostgreSQL host (default: localhost)
  POSTGRES_DB                Database name (default: orders)
  DEAD_LETTER_AFTER          Retries before dead-lettering (default: 0 = never)
  MAX_SUBSCRIBE_FAILURES     Consecutive failures before halting (default: 5)
  LOG_LEVEL                  DEBUG, INFO, WARNING, ERROR or CRITICAL (default: INFO)
  LOG_FORMAT                 json or text (default: json)
        """,
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override LOG_LEVEL",
    )

    parser.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Override LOG_FORMAT",
    )

    return parser.parse_args(argv)


def build_queue(config: ConsumerConfig) -> KafkaMessageQueue:
    """Kafka queue adapter configured for the ingestion consumer."""
    return KafkaMessageQueue(
        config.kafka_bootstrap_servers,
        client_id=config.consumer_client_id,
        group_id=config.consumer_group_id,
        auto_offset_reset=config.consumer_auto_offset_reset,
        publish_timeout=config.publish_timeout_seconds,
        poll_timeout=config.poll_timeout_seconds,
    )


def main(argv=None) -> int:
    """
    Main entry point for the consumer service.

    Returns:
        Exit code (0 = clean shutdown, 1 = error)
    """
    global consumer_instance

    args = parse_args(argv)

    try:
        config = load_config()
    except Exception as e:
        print(f"Invalid consumer configuration: {e}", file=sys.stderr)
        return 1

    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format

    setup_logger(
        name="src",
        service_name="order-consumer",
        log_level=config.log_level,
        log_format=config.log_format,
    )
    logger = logging.getLogger(__name__)

    logger.info(
        "Ingestion consumer starting",
        extra={
            "bootstrap_servers": config.kafka_bootstrap_servers,
            "topic": config.kafka_topic_orders,
            "group_id": config.consumer_group_id,
            "dead_letter_after": config.dead_letter_after,
        },
    )

    try:
        db_manager = init_database(config)
    except RuntimeError:
        logger.error("Database unavailable at startup", exc_info=True)
        return 1

    try:
        queue = build_queue(config)
        queue.ensure_streams(
            [config.kafka_topic_orders, config.kafka_topic_dead_letter],
            partitions=config.kafka_topic_partitions,
            replication_factor=config.kafka_replication_factor,
        )
    except QueueUnavailable:
        logger.error("Failed to initialize Kafka streams", exc_info=True)
        db_manager.close()
        return 1

    consumer_instance = OrderConsumer(config, queue, OrderStore(db_manager))

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        logger.info("Consuming orders until SIGINT or SIGTERM")
        consumer_instance.start()
        logger.info("Ingestion consumer stopped")
        return 0
    except ConsumerHalted:
        logger.error("Consumer halted", exc_info=True)
        return 1
    finally:
        queue.close()
        db_manager.close()


if __name__ == "__main__":
    sys.exit(main())
