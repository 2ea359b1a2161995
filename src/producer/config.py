"""
Producer Configuration Module

Settings for the mock order load generator: Kafka connection, production
rate and duration, mock data seed and logging.

CONFIGURATION SOURCES (priority order):
1. Command-line flags (src/producer/main.py)
2. Environment variables
3. .env file (loaded by python-dotenv)
4. Default values
"""

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file if present (local development)
load_dotenv()


class ProducerConfig(BaseSettings):
    """
    Producer service configuration with validation.

    Attributes:
        kafka_bootstrap_servers: Kafka broker addresses
        kafka_topic_orders: Topic the orders are published to
        producer_client_id: Producer identifier
        producer_rate: Orders per second to generate
        producer_duration: How long to run (seconds, 0 = until stopped)
        mock_seed: Seed for reproducible mock orders
        publish_timeout_seconds: Wait for a broker acknowledgment per order
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log output format (json or text)

    Example:
        >>> config = ProducerConfig()
        >>> config.kafka_topic_orders
        'orders'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === KAFKA CONNECTION ===
    kafka_bootstrap_servers: str = Field(
        default="localhost:9092",
        description="Kafka broker addresses (comma-separated for multiple brokers)",
        json_schema_extra={"example": "kafka:9092"},
    )

    kafka_topic_orders: str = Field(
        default="orders",
        description="Kafka topic for order payloads",
    )

    # === PRODUCER SETTINGS ===
    producer_client_id: str = Field(
        default="order-producer",
        description="Producer client identifier (visible in broker logs)",
    )

    producer_rate: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Number of orders to generate per second (1-1000)",
        json_schema_extra={"note": "Each publish waits for the broker, so very high rates are capped by latency"},
    )

    producer_duration: int = Field(
        default=60,
        ge=0,
        description="Producer run duration in seconds (0 = run indefinitely)",
    )

    publish_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Wait for a broker acknowledgment per order",
    )

    # === MOCK DATA SETTINGS ===
    mock_seed: int = Field(
        default=42,
        description="Random seed for reproducible mock data generation",
        json_schema_extra={"note": "Same seed = same orders (useful for testing)"},
    )

    # === LOGGING CONFIGURATION ===
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    log_format: str = Field(
        default="json",
        description="Log output format (json for production, text for development)",
    )

    def display_config(self) -> str:
        """Human-readable configuration summary."""
        duration = f"{self.producer_duration}s" if self.producer_duration > 0 else "infinite"
        return f"""
Order Producer Configuration
=============================
Kafka:
  Bootstrap Servers: {self.kafka_bootstrap_servers}
  Topic: {self.kafka_topic_orders}
  Client ID: {self.producer_client_id}

Producer Settings:
  Rate: {self.producer_rate} orders/second
  Duration: {duration}
  Publish Timeout: {self.publish_timeout_seconds}s
  Mock Seed: {self.mock_seed}

Logging:
  Level: {self.log_level}
  Format: {self.log_format}
"""


def load_config() -> ProducerConfig:
    """Load and validate producer configuration."""
    return ProducerConfig()
