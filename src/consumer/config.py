"""
Consumer Configuration Module

Settings for the ingestion consumer: Kafka subscription, PostgreSQL storage,
retry/backoff policy and logging. Loaded from environment variables (and a
.env file) with Pydantic validation.
"""

from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file if present (local development)
load_dotenv()


class ConsumerConfig(BaseSettings):
    """
    Consumer service configuration with validation.

    Includes Kafka consumer settings, database configuration and the
    failure policy of the ingestion loop.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === KAFKA SETTINGS ===
    kafka_bootstrap_servers: str = Field(
        default="localhost:9092",
        description="Kafka broker addresses",
    )

    kafka_topic_orders: str = Field(
        default="orders",
        description="Topic carrying order payloads",
    )

    kafka_topic_dead_letter: str = Field(
        default="orders.dlq",
        description="Topic receiving orders that exhausted their retry budget",
    )

    kafka_topic_partitions: int = Field(
        default=1,
        ge=1,
        description="Partitions for topics created at startup",
    )

    kafka_replication_factor: int = Field(
        default=1,
        ge=1,
        description="Replication factor for topics created at startup",
    )

    consumer_group_id: str = Field(
        default="order-ingestors",
        description="Consumer group ID",
    )

    consumer_client_id: str = Field(
        default="order-consumer",
        description="Kafka client identifier",
    )

    consumer_auto_offset_reset: str = Field(
        default="earliest",
        pattern="^(earliest|latest)$",
        description="Where a new group starts consuming: earliest or latest",
    )

    # === DATABASE SETTINGS ===
    database_url: Optional[str] = Field(
        default=None,
        description="Full SQLAlchemy URL; overrides the postgres_* settings when set",
    )

    postgres_host: str = Field(default="localhost", description="PostgreSQL host")

    postgres_port: int = Field(default=5432, description="PostgreSQL port")

    postgres_db: str = Field(default="orders", description="PostgreSQL database name")

    postgres_user: str = Field(default="postgres", description="PostgreSQL username")

    postgres_password: str = Field(default="postgres", description="PostgreSQL password")

    db_pool_size: int = Field(
        default=5,
        ge=1,
        le=20,
        description="SQLAlchemy connection pool size",
    )

    # === PROCESSING SETTINGS ===
    poll_timeout_seconds: float = Field(
        default=1.0,
        gt=0,
        le=60,
        description="Bounded wait for one message before re-polling",
    )

    retry_backoff_ms: int = Field(
        default=1000,
        ge=1,
        le=60000,
        description="Initial backoff after a transient storage failure",
    )

    max_backoff_ms: int = Field(
        default=30000,
        ge=1,
        le=600000,
        description="Upper bound for the exponential backoff",
    )

    dead_letter_after: int = Field(
        default=0,
        ge=0,
        description="Transient failures before a message is dead-lettered (0 = never)",
    )

    max_subscribe_failures: int = Field(
        default=5,
        ge=1,
        description="Consecutive subscription failures before the consumer halts",
    )

    publish_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Wait for a broker acknowledgment when publishing",
    )

    # === LOGGING ===
    log_level: str = Field(default="INFO", description="Logging level")

    log_format: str = Field(default="json", description="Log output format (json or text)")

    def get_database_url(self) -> str:
        """Get SQLAlchemy database URL."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    def backoff_seconds(self, attempt: int) -> float:
        """Exponential backoff for the given attempt (0-based), capped."""
        backoff_ms = min(self.retry_backoff_ms * (2 ** attempt), self.max_backoff_ms)
        return backoff_ms / 1000


def load_config() -> ConsumerConfig:
    """Load and validate consumer configuration."""
    return ConsumerConfig()
