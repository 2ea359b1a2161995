"""
Structured JSON Logging Configuration

This module provides structured logging for the order API, the ingestion
consumer and the load producer.

WHY STRUCTURED LOGGING?
- One JSON object per line is trivially machine-readable
- The same order can be traced from HTTP submit to database upsert by
  filtering on correlation_id (the order_uid)
- Log aggregation tools (ELK, Loki, CloudWatch) index the fields directly

EXAMPLE OUTPUT:
{
  "timestamp": "2025-01-10T14:30:00.123Z",
  "level": "INFO",
  "service": "order-consumer",
  "logger": "src.consumer.consumer",
  "correlation_id": "b563feb7b2b84b6test",
  "message": "Order persisted",
  "extra": {"partition": 0, "offset": 17, "processing_time_ms": 4.1}
}

CONFIGURATION:
Entry points call setup_logger(name="src", ...) once. Every module logs via
logging.getLogger(__name__), so records from src.consumer.consumer,
src.shared.queue etc. propagate to the configured "src" logger.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

# Attributes present on every LogRecord; anything else came in via extra=
STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName", "correlation_id",
}


# ==============================================================================
# JSON FORMATTER
# ==============================================================================


class JSONFormatter(logging.Formatter):
    """
    Log formatter that emits one JSON object per record.

    Fields:
    - timestamp: ISO 8601, UTC, millisecond precision
    - level, service, logger, message
    - correlation_id: order_uid when logged through CorrelationAdapter
    - exception: formatted traceback when exc_info is set
    - extra: any additional fields passed via extra=
    """

    def __init__(self, service_name: str = "order-pipeline", include_extra: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self._format_timestamp(record.created),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if getattr(record, "correlation_id", None) is not None:
            log_data["correlation_id"] = record.correlation_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_extra:
            extra_fields = {
                k: v for k, v in record.__dict__.items()
                if k not in STANDARD_ATTRS and not k.startswith("_")
            }
            if extra_fields:
                log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)

    @staticmethod
    def _format_timestamp(created: float) -> str:
        dt = datetime.fromtimestamp(created, tz=timezone.utc)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


# ==============================================================================
# PLAIN TEXT FORMATTER (for development)
# ==============================================================================


class PlainTextFormatter(logging.Formatter):
    """
    Human-readable formatter for local development.

    Format: [2025-01-10 14:30:00] INFO [order-api] Order queued
    """

    def __init__(self, service_name: str = "order-pipeline"):
        super().__init__(
            fmt=f"[%(asctime)s] %(levelname)s [{service_name}] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


# ==============================================================================
# LOGGER SETUP
# ==============================================================================


def setup_logger(
    name: str,
    service_name: str,
    log_level: str = "INFO",
    log_format: str = "json",
) -> logging.Logger:
    """
    Configure a logger with a single stdout handler.

    Args:
        name: Logger name; use "src" to capture every module in the project
        service_name: Service identifier ("order-api", "order-consumer", ...)
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: "json" or "text"

    Returns:
        Configured logging.Logger instance

    Example:
        >>> logger = setup_logger("src", "order-consumer", "INFO", "json")
        >>> logger.info("Consumer started", extra={"topic": "orders"})
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Prevent duplicate handlers if logger already configured
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logger.level)

    if log_format.lower() == "json":
        formatter: logging.Formatter = JSONFormatter(service_name=service_name)
    else:
        formatter = PlainTextFormatter(service_name=service_name)

    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


# ==============================================================================
# CORRELATION ID ADAPTER
# ==============================================================================


class CorrelationAdapter(logging.LoggerAdapter):
    """
    Logger adapter that stamps correlation_id on every record.

    Used to trace one order through decode, upsert and acknowledgment.

    Example:
        >>> order_logger = CorrelationAdapter(logger, {"correlation_id": order.order_uid})
        >>> order_logger.info("Order persisted")
    """

    def process(self, msg: str, kwargs: dict) -> tuple:
        extra = dict(kwargs.get("extra") or {})

        if "correlation_id" in self.extra:
            extra["correlation_id"] = self.extra["correlation_id"]

        kwargs["extra"] = extra
        return msg, kwargs
