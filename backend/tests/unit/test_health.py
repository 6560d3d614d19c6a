"""Unit tests for health checks."""

from uuid import uuid4

from linkup.models import QueueEntry
from linkup.observability.health import (
    STALE_ENTRY_TOLERANCE,
    ComponentHealth,
    HealthStatus,
    check_database_health,
    check_queue_health,
    get_overall_health,
)

NOW = 1_700_000_000_000
HOUR = 60 * 60 * 1000


def add_waiting(db_session, count, available_to):
    for _ in range(count):
        db_session.add(
            QueueEntry(
                user_id=uuid4(),
                available_from=NOW - 2 * HOUR,
                available_to=available_to,
                status="waiting",
                created_at=NOW - 2 * HOUR,
                updated_at=NOW - 2 * HOUR,
            )
        )
    db_session.commit()


class TestQueueHealth:
    def test_healthy_queue(self, db_session):
        add_waiting(db_session, 3, NOW + HOUR)

        health = check_queue_health(db_session, now=NOW)

        assert health.status == HealthStatus.HEALTHY
        assert health.details == {"waiting": 3, "past_window": 0}

    def test_unswept_entries_degrade(self, db_session):
        add_waiting(db_session, STALE_ENTRY_TOLERANCE + 1, NOW - HOUR)

        health = check_queue_health(db_session, now=NOW)

        assert health.status == HealthStatus.DEGRADED
        assert health.details["past_window"] == STALE_ENTRY_TOLERANCE + 1

    def test_database_check(self, db_session):
        assert check_database_health(db_session).status == HealthStatus.HEALTHY


class TestOverallHealth:
    def test_database_down_is_unhealthy(self):
        components = {
            "database": ComponentHealth(status=HealthStatus.UNHEALTHY),
            "broker": ComponentHealth(status=HealthStatus.HEALTHY),
        }
        assert get_overall_health(components) == HealthStatus.UNHEALTHY

    def test_broker_down_degrades(self):
        components = {
            "database": ComponentHealth(status=HealthStatus.HEALTHY),
            "broker": ComponentHealth(status=HealthStatus.UNHEALTHY),
        }
        assert get_overall_health(components) == HealthStatus.DEGRADED

    def test_all_healthy(self):
        components = {"database": ComponentHealth(status=HealthStatus.HEALTHY)}
        assert get_overall_health(components) == HealthStatus.HEALTHY
