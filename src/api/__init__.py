"""
Order Pipeline HTTP API Package

- config.py: ApiConfig (consumer settings plus HTTP settings)
- queries.py: Query gateway over the order store
- app.py: FastAPI routes, error mapping, service wiring, background consumer
- main.py: uvicorn entry point
"""

__version__ = "1.0.0"

from src.api.config import ApiConfig, load_config

__all__ = [
    "ApiConfig",
    "load_config",
]
