"""
Health Check

Health check endpoint for monitoring.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict

from observability.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class HealthStatus:
    """Health check result."""

    status: str  # healthy, degraded, unhealthy
    version: str
    timestamp: str
    checks: Dict[str, bool]


async def check_health(
    version: str,
    sweeper_running: bool = True,
    upstream_client_open: bool = True,
) -> HealthStatus:
    """
    Perform health check.

    Args:
        version: Service version
        sweeper_running: Rate-limit sweep task is alive
        upstream_client_open: Outbound HTTP client is usable

    Returns:
        HealthStatus with check results
    """
    checks = {
        "rate_limit_sweeper": sweeper_running,
        "upstream_client": upstream_client_open,
    }

    all_healthy = all(checks.values())
    any_healthy = any(checks.values())

    if all_healthy:
        status = "healthy"
    elif any_healthy:
        status = "degraded"
    else:
        status = "unhealthy"
        logger.warning("health_check_unhealthy", checks=checks)

    return HealthStatus(
        status=status,
        version=version,
        timestamp=datetime.now(timezone.utc).isoformat(),
        checks=checks,
    )
