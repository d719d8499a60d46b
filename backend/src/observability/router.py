"""Observability API endpoints.

Provides Prometheus metrics and a health check for monitoring.
"""

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from database import get_db
from .health import (
    check_database_health,
    check_broker_health,
    check_erp_configuration,
    get_overall_health,
    HealthStatus,
)

router = APIRouter(tags=["Observability"])


@router.get(
    "/metrics",
    summary="Prometheus metrics endpoint",
    include_in_schema=False,
)
def metrics():
    """Expose Prometheus metrics in text exposition format."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@router.get(
    "/health",
    summary="Health check endpoint",
    description="Returns health status of the database, the job broker and the ERP configuration",
)
def health_check(db: Session = Depends(get_db)):
    """Check health of all system components.

    Returns 200 when healthy or degraded, 503 if any component is unhealthy.
    """
    components = {
        "database": check_database_health(db),
        "broker": check_broker_health(),
        "erp_configuration": check_erp_configuration(db),
    }

    overall_status = get_overall_health(components)

    response_data = {
        "status": overall_status.value,
        "components": {
            name: {
                "status": comp.status.value,
                "message": comp.message,
                "latency_ms": comp.latency_ms,
            }
            for name, comp in components.items()
        }
    }

    status_code = 200 if overall_status != HealthStatus.UNHEALTHY else 503

    return JSONResponse(
        content=response_data,
        status_code=status_code
    )
