"""
Pipeline Error Taxonomy

Every failure the order pipeline can report, grouped by how callers react:

CLIENT INPUT DEFECTS (never retried):
- MalformedPayload: payload is not a structurally valid order
- InvalidField: payload is well-formed but a field value is out of range
- ConstraintViolation: storage rejected the primary key

TRANSIENT INFRASTRUCTURE DEFECTS (retried by redelivery on the consumer path):
- PublishUnavailable / SubscriptionUnavailable: Kafka unreachable or failing
- StorageUnavailable: database connectivity lost

ABSENCE (not a failure):
- NotFound: no stored order with the requested order_uid
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for order pipeline errors."""


class MalformedPayload(PipelineError):
    """Payload cannot be decoded into an order."""


class InvalidField(PipelineError):
    """A decoded field violates its value constraint."""

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(f"Invalid value for field '{field}'" + (f": {message}" if message else ""))
        self.field = field


class QueueUnavailable(PipelineError):
    """Kafka broker is unreachable."""


class PublishUnavailable(QueueUnavailable):
    """Message was not confirmed as durably appended; assume it was not persisted."""


class SubscriptionUnavailable(QueueUnavailable):
    """Subscription cannot deliver or acknowledge messages."""


class StorageUnavailable(PipelineError):
    """Database connectivity lost."""


class ConstraintViolation(PipelineError):
    """Row rejected by a storage constraint (malformed primary key, etc.)."""


class NotFound(PipelineError):
    def __init__(self, order_uid: str):
        super().__init__(f"Order '{order_uid}' not found")
        self.order_uid = order_uid


class ConsumerHalted(PipelineError):
    """Consumer gave up after repeated subscription failures."""
