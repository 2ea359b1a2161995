"""
Order Producer Package

The submission side of the pipeline.

- producer.py: Submission gateway (validate, then publish keyed by order_uid)
- mock_data.py: Reproducible mock order generator (Faker)
- config.py: Load generator configuration from environment variables
- main.py: Rate-limited load generator CLI

USAGE:
    python -m src.producer.main --rate 10 --duration 60

    from src.producer.producer import OrderProducer
    producer = OrderProducer(queue, topic="orders")
    order_uid = producer.submit(raw_json_bytes)
"""

__version__ = "1.0.0"

from src.producer.config import ProducerConfig, load_config
from src.producer.mock_data import MockDataGenerator
from src.producer.producer import OrderProducer

__all__ = [
    "OrderProducer",
    "MockDataGenerator",
    "ProducerConfig",
    "load_config",
]
