"""
API Service Configuration

The HTTP service embeds the ingestion consumer, so it carries every consumer
setting plus the HTTP-specific ones below.
"""

from pydantic import Field

from src.consumer.config import ConsumerConfig


class ApiConfig(ConsumerConfig):
    """
    HTTP service configuration.

    Attributes:
        kafka_topic_messages: Demo topic behind /publish and /read
        http_host / http_port: Bind address
        read_timeout_seconds: Bounded wait of GET /read
        run_consumer: Run the ingestion consumer in a background thread
    """

    kafka_topic_messages: str = Field(
        default="foo",
        description="Topic for the /publish and /read demo endpoints",
    )

    http_host: str = Field(default="0.0.0.0", description="HTTP bind host")

    http_port: int = Field(default=8080, ge=1, le=65535, description="HTTP bind port")

    read_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        le=60,
        description="How long GET /read waits for a message before answering 504",
    )

    run_consumer: bool = Field(
        default=True,
        description="Start the ingestion consumer inside the API process",
    )


def load_config() -> ApiConfig:
    """Load and validate API configuration."""
    return ApiConfig()
