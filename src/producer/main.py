"""
Mock Order Load Generator - Entry Point

Publishes generated orders through the submission gateway at a fixed rate
so the ingestion consumer has something to materialize.

RUN MODES:
- Batch: run for PRODUCER_DURATION seconds, then stop
- Continuous: PRODUCER_DURATION = 0, run until SIGINT/SIGTERM

USAGE:
    python -m src.producer.main                # PRODUCER_* from the environment
    python -m src.producer.main --rate 50 --duration 30
    python -m src.producer.main --duration 0 --log-level DEBUG --log-format text
    python -m src.producer.main --seed 12345 --duration 60

EXIT CODES:
    0  All generated orders were acknowledged by the broker
    1  Kafka unreachable at startup, or at least one publish failed
"""

import argparse
import logging
import signal
import sys
import threading
import time
from typing import Optional

from pydantic import ValidationError

from src.producer.config import ProducerConfig, load_config
from src.producer.mock_data import MockDataGenerator
from src.producer.producer import OrderProducer
from src.shared.errors import PublishUnavailable, QueueUnavailable
from src.shared.logger import setup_logger
from src.shared.queue import KafkaMessageQueue

# Set by the signal handler; checked between orders
shutdown_requested = threading.Event()


def signal_handler(signum, frame):
    """Stop generating after the order being published."""
    logging.getLogger(__name__).info(
        f"Received {signal.Signals(signum).name}, stopping production..."
    )
    shutdown_requested.set()


def run_producer(config: ProducerConfig, queue: Optional[KafkaMessageQueue] = None) -> int:
    """
    Run the production loop.

    Args:
        config: Rate, duration, seed and target topic
        queue: Queue adapter to publish through (created from config if None)

    Returns:
        0 when every order was acknowledged by the broker, else 1
    """
    logger = logging.getLogger(__name__)

    logger.info(
        "Load generator starting",
        extra={
            "bootstrap_servers": config.kafka_bootstrap_servers,
            "topic": config.kafka_topic_orders,
            "rate": config.producer_rate,
            "duration": config.producer_duration if config.producer_duration > 0 else "infinite",
            "seed": config.mock_seed,
        },
    )

    if queue is None:
        try:
            queue = KafkaMessageQueue(
                config.kafka_bootstrap_servers,
                client_id=config.producer_client_id,
                publish_timeout=config.publish_timeout_seconds,
            )
            queue.ensure_streams([config.kafka_topic_orders])
        except QueueUnavailable:
            logger.error(
                "Cannot connect to Kafka brokers",
                exc_info=True,
                extra={"bootstrap_servers": config.kafka_bootstrap_servers},
            )
            return 1

    generator = MockDataGenerator(config.mock_seed)
    producer = OrderProducer(queue, topic=config.kafka_topic_orders)

    interval = 1.0 / config.producer_rate
    started = time.monotonic()

    try:
        while not shutdown_requested.is_set():
            elapsed = time.monotonic() - started
            if config.producer_duration > 0 and elapsed >= config.producer_duration:
                logger.info(
                    "Duration limit reached, stopping production",
                    extra={"duration": config.producer_duration, "orders_produced": producer.orders_published},
                )
                break

            order = generator.next_order()
            try:
                producer.publish_order(order)
            except PublishUnavailable:
                # Already logged with the order's correlation id
                pass
            else:
                if producer.orders_published % 100 == 0:
                    logger.info(
                        "Orders published so far",
                        extra={
                            "orders_produced": producer.orders_published,
                            "elapsed_s": round(elapsed, 2),
                            "rate_target": config.producer_rate,
                            "actual_rate": round(producer.orders_published / elapsed, 2) if elapsed > 0 else 0,
                            "errors": producer.publish_failures,
                        },
                    )

            shutdown_requested.wait(interval)
    finally:
        elapsed = time.monotonic() - started
        queue.close()
        logger.info(
            "Load generator finished",
            extra={
                "total_orders": producer.orders_published,
                "total_errors": producer.publish_failures,
                "duration_s": round(elapsed, 2),
                "average_rate": round(producer.orders_published / elapsed, 2) if elapsed > 0 else 0,
            },
        )

    return 0 if producer.publish_failures == 0 else 1


def parse_args(argv=None) -> argparse.Namespace:
    """Command-line args override environment variables."""
    parser = argparse.ArgumentParser(
        description="Publish generated orders to Kafka at a fixed rate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m src.producer.main --rate 100 --duration 10
  python -m src.producer.main --duration 0 --rate 5
  python -m src.producer.main --bootstrap-servers kafka:9092 --topic orders
  python -m src.producer.main --seed 7 --log-format text
        """,
    )

    parser.add_argument("--bootstrap-servers", type=str, help="Kafka bootstrap servers")
    parser.add_argument("--topic", type=str, help="Kafka topic name")
    parser.add_argument("--rate", type=int, help="Orders per second (1-1000)")
    parser.add_argument("--duration", type=int, help="Run duration in seconds (0=infinite)")
    parser.add_argument("--client-id", type=str, help="Producer client ID")
    parser.add_argument("--seed", type=int, help="Random seed for reproducible data")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Log output format",
    )

    return parser.parse_args(argv)


def apply_overrides(config: ProducerConfig, args: argparse.Namespace) -> ProducerConfig:
    """
    Return a configuration with the given CLI flags applied.

    The result is rebuilt through validation, so flags obey the same
    constraints as environment variables.

    Raises:
        pydantic.ValidationError: A flag is out of range
    """
    flags = {
        "kafka_bootstrap_servers": args.bootstrap_servers,
        "kafka_topic_orders": args.topic,
        "producer_rate": args.rate,
        "producer_duration": args.duration,
        "producer_client_id": args.client_id,
        "mock_seed": args.seed,
        "log_level": args.log_level,
        "log_format": args.log_format,
    }
    overrides = {name: value for name, value in flags.items() if value is not None}
    return ProducerConfig(**{**config.model_dump(), **overrides})


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        config = apply_overrides(load_config(), args)
    except ValidationError as e:
        print(f"Invalid producer configuration: {e}", file=sys.stderr)
        return 1

    setup_logger(
        name="src",
        service_name="order-producer",
        log_level=config.log_level,
        log_format=config.log_format,
    )
    print(config.display_config())

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    return run_producer(config)


if __name__ == "__main__":
    sys.exit(main())
