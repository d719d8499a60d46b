"""Health check utilities.

Checks the database, the Celery broker (Redis) and whether an ERP
configuration is active. The ERP itself is never called from a health
probe so probes do not consume rate-limiter tokens.
"""

import time
from enum import Enum
from typing import Dict, Optional
from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.orm import Session
import redis

from config import get_settings
from .logging_config import get_logger

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    """Health check status enum."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class ComponentHealth:
    """Health status for a single component."""
    status: HealthStatus
    message: Optional[str] = None
    latency_ms: Optional[float] = None


def check_database_health(db: Session) -> ComponentHealth:
    """Check database connectivity.

    Args:
        db: Database session

    Returns:
        ComponentHealth: Database health status
    """
    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        latency_ms = (time.time() - start) * 1000

        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message="Database connection OK",
            latency_ms=round(latency_ms, 2)
        )
    except Exception as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            message=f"Database error: {str(e)}"
        )


def check_broker_health() -> ComponentHealth:
    """Check the Redis broker used by the sync workers."""
    try:
        client = redis.from_url(get_settings().CELERY_BROKER_URL, decode_responses=True)

        start = time.time()
        client.ping()
        latency_ms = (time.time() - start) * 1000

        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message="Broker connection OK",
            latency_ms=round(latency_ms, 2)
        )
    except Exception as e:
        logger.error(f"Broker health check failed: {e}", exc_info=True)
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            message=f"Broker error: {str(e)}"
        )


def check_erp_configuration(db: Session) -> ComponentHealth:
    """Report DEGRADED when no ERP configuration has sync enabled."""
    from models import ERPConfiguration

    try:
        configured = db.query(ERPConfiguration).filter(
            ERPConfiguration.sync_enabled.is_(True)
        ).first() is not None
    except Exception as e:
        logger.error(f"ERP configuration check failed: {e}", exc_info=True)
        return ComponentHealth(status=HealthStatus.UNHEALTHY, message=f"ERP configuration error: {e}")

    if not configured:
        return ComponentHealth(status=HealthStatus.DEGRADED, message="No active ERP configuration")
    return ComponentHealth(status=HealthStatus.HEALTHY, message="ERP configuration active")


def get_overall_health(components: Dict[str, ComponentHealth]) -> HealthStatus:
    """Determine overall health from component statuses.

    Args:
        components: Dictionary of component health statuses

    Returns:
        HealthStatus: Overall system health
    """
    if all(c.status == HealthStatus.HEALTHY for c in components.values()):
        return HealthStatus.HEALTHY

    if any(c.status == HealthStatus.UNHEALTHY for c in components.values()):
        return HealthStatus.UNHEALTHY

    return HealthStatus.DEGRADED
