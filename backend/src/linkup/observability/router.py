"""Metrics, health and readiness endpoints."""

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.orm import Session

from ..database import get_db
from .health import (
    HealthStatus,
    check_broker_health,
    check_database_health,
    check_queue_health,
    get_overall_health,
)

router = APIRouter(tags=["Observability"])


@router.get("/metrics", include_in_schema=False)
def metrics():
    """Prometheus exposition of the matching_* metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/health", summary="Component health (database, broker, queue)")
def health_check(db: Session = Depends(get_db)):
    """503 only when the database is down; a broker outage or lagging sweep reports ``degraded``."""
    components = {
        "database": check_database_health(db),
        "broker": check_broker_health(),
    }
    if components["database"].status == HealthStatus.HEALTHY:
        components["queue"] = check_queue_health(db)

    overall = get_overall_health(components)
    return JSONResponse(
        content={
            "status": overall.value,
            "components": {name: component.to_dict() for name, component in components.items()},
        },
        status_code=503 if overall == HealthStatus.UNHEALTHY else 200,
    )


@router.get("/ready", summary="Readiness probe")
def readiness_check(db: Session = Depends(get_db)):
    database = check_database_health(db)
    if database.status != HealthStatus.HEALTHY:
        return JSONResponse(content={"status": "not_ready", "message": database.message}, status_code=503)
    return {"status": "ready"}
