"""Component health checks for the health and readiness endpoints.

Components:
- database: ``SELECT 1`` round trip (required)
- broker: Redis ping; scheduled cycles and notifications need it
- queue: waiting entries whose window already ended; a growing number
  means the maintenance sweep is not running
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import redis
from redis.exceptions import RedisError
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..models.queue_entry import QueueEntry
from .logging_config import get_logger

logger = get_logger(__name__)

# Waiting entries past their window tolerated before the queue reports degraded
STALE_ENTRY_TOLERANCE = 50


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    status: HealthStatus
    message: Optional[str] = None
    latency_ms: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {"status": self.status.value, "message": self.message, "latency_ms": self.latency_ms}
        if self.details:
            data["details"] = self.details
        return data


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def check_database_health(db: Session) -> ComponentHealth:
    started = time.perf_counter()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return ComponentHealth(status=HealthStatus.UNHEALTHY, message=f"Database error: {e}")
    return ComponentHealth(status=HealthStatus.HEALTHY, message="Database reachable", latency_ms=_elapsed_ms(started))


def check_broker_health() -> ComponentHealth:
    """Ping the Redis instance backing Celery."""
    started = time.perf_counter()
    try:
        client = redis.from_url(get_settings().REDIS_URL, socket_connect_timeout=1, socket_timeout=1)
        client.ping()
    except RedisError as e:
        logger.warning(f"Broker health check failed: {e}")
        return ComponentHealth(status=HealthStatus.UNHEALTHY, message=f"Broker error: {e}")
    return ComponentHealth(status=HealthStatus.HEALTHY, message="Broker reachable", latency_ms=_elapsed_ms(started))


def check_queue_health(db: Session, now: Optional[int] = None) -> ComponentHealth:
    """Report waiting entries and how many of them should already have expired."""
    now = now if now is not None else int(time.time() * 1000)
    try:
        waiting, stale = (
            db.query(
                func.count(QueueEntry.id),
                func.count(QueueEntry.id).filter(QueueEntry.available_to <= now),
            )
            .filter(QueueEntry.status == "waiting")
            .one()
        )
    except SQLAlchemyError as e:
        logger.error(f"Queue health check failed: {e}")
        return ComponentHealth(status=HealthStatus.UNHEALTHY, message=f"Queue query failed: {e}")

    details = {"waiting": waiting, "past_window": stale}
    if stale > STALE_ENTRY_TOLERANCE:
        return ComponentHealth(
            status=HealthStatus.DEGRADED,
            message="Expired entries are not being swept",
            details=details,
        )
    return ComponentHealth(status=HealthStatus.HEALTHY, message="Queue OK", details=details)


def get_overall_health(components: Dict[str, ComponentHealth]) -> HealthStatus:
    """Only the database is required; anything else failing degrades the service.

    Enrollment, selection and feedback keep working without the broker,
    only scheduled cycles and meeting notifications stop.
    """
    database = components.get("database")
    if database is not None and database.status == HealthStatus.UNHEALTHY:
        return HealthStatus.UNHEALTHY
    if all(c.status == HealthStatus.HEALTHY for c in components.values()):
        return HealthStatus.HEALTHY
    return HealthStatus.DEGRADED
