"""
OAuth Playground Proxy - Observability Module

Logging, metrics, and health:
- Structlog configuration
- Prometheus metrics
- Health checks
"""

from observability.logging_config import get_logger

__all__ = ["get_logger"]
