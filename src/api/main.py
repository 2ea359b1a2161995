"""
Order Pipeline API - Main Entry Point

Runs the HTTP service (with the embedded ingestion consumer) under uvicorn.

USAGE:
    python -m src.api.main [--host HOST] [--port PORT] [--no-consumer]
                           [--log-level LEVEL] [--log-format json|text]

STARTUP:
- Database and Kafka are connected before the server binds its port
- If either is unreachable the process exits with code 1
"""

import argparse
import logging
import sys

import uvicorn

from src.api.app import build_services, create_app
from src.api.config import load_config
from src.shared.errors import QueueUnavailable
from src.shared.logger import setup_logger


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Order Pipeline HTTP API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m src.api.main
  python -m src.api.main --port 9000 --log-format text
  python -m src.api.main --no-consumer

Environment Variables:
  HTTP_HOST / HTTP_PORT      Bind address (default: 0.0.0.0:8080)
  KAFKA_TOPIC_MESSAGES       Demo topic for /publish and /read (default: foo)
  READ_TIMEOUT_SECONDS       Bounded wait of /read (default: 2.0)
  RUN_CONSUMER               Embed the ingestion consumer (default: true)
  See src/consumer/main.py for Kafka and database settings.
        """,
    )

    parser.add_argument("--host", type=str, help="Bind host (overrides HTTP_HOST)")
    parser.add_argument("--port", type=int, help="Bind port (overrides HTTP_PORT)")
    parser.add_argument(
        "--no-consumer",
        action="store_true",
        help="Serve HTTP only; run the consumer separately",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (overrides LOG_LEVEL env var)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Log output format (overrides LOG_FORMAT env var)",
    )

    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        config = load_config()
    except Exception as e:
        print(f"ERROR: Failed to load configuration: {e}", file=sys.stderr)
        return 1

    if args.host:
        config.http_host = args.host
    if args.port:
        config.http_port = args.port
    if args.no_consumer:
        config.run_consumer = False
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format

    setup_logger(
        name="src",
        service_name="order-api",
        log_level=config.log_level,
        log_format=config.log_format,
    )
    logger = logging.getLogger(__name__)

    logger.info(
        "Starting Order Pipeline API",
        extra={
            "http_host": config.http_host,
            "http_port": config.http_port,
            "kafka_bootstrap_servers": config.kafka_bootstrap_servers,
            "run_consumer": config.run_consumer,
        },
    )

    try:
        services = build_services(config)
    except (RuntimeError, QueueUnavailable):
        logger.error("Startup failed", exc_info=True)
        return 1

    # Built services are closed by the app's lifespan only when it owns them
    try:
        uvicorn.run(
            create_app(services=services),
            host=config.http_host,
            port=config.http_port,
            log_config=None,
        )
    finally:
        services.queue.close()
        services.db_manager.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
