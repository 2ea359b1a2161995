"""
Order Ingestion Consumer Package

Reads order payloads from the 'orders' topic and materializes them into
the orders table.

┌─────────────┐     ┌──────────────┐     ┌────────────────┐
│   Kafka     │────▶│  Ingestion   │────▶│   PostgreSQL   │
│   orders    │     │  Consumer    │     │  orders table  │
└─────────────┘     └──────┬───────┘     └────────────────┘
                           │ (retry budget exhausted)
                           ▼
                    ┌─────────────┐
                    │ orders.dlq  │
                    └─────────────┘

OFFSET MANAGEMENT:
1. Fetch one message
2. Decode, validate, upsert
3. Commit offset ONLY after the upsert committed
4. Transient storage failure: rewind, back off, try again
5. Poison message: log and commit (skip)

Package components:
- config.py: Configuration from environment variables
- models.py: SQLAlchemy table definition
- database.py: Engine/session management and the OrderStore adapter
- consumer.py: Ingestion state machine
- main.py: Standalone entry point with signal handling
"""

__version__ = "1.0.0"

from src.consumer.config import ConsumerConfig, load_config

__all__ = [
    "ConsumerConfig",
    "load_config",
]
