"""Celery application for scheduled matching jobs.

Beat schedule:
- matching.run_cycle: every 5 minutes
- matching.queue_maintenance: hourly
- learning.optimize_weights: daily at 03:00 UTC
- learning.fairness_audit: daily at 03:30 UTC

Usage:
    celery -A linkup.workers.celery_app worker --beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab

from ..config import get_settings

settings = get_settings()

celery_app = Celery(
    "linkup",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "linkup.matching.tasks",
        "linkup.learning.tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
)

celery_app.conf.beat_schedule = {
    "matching-cycle": {
        "task": "matching.run_cycle",
        "schedule": crontab(minute="*/5"),
        "options": {"expires": 240},
    },
    "matching-queue-maintenance": {
        "task": "matching.queue_maintenance",
        "schedule": crontab(minute=0),
        "options": {"expires": 3000},
    },
    "learning-optimize-weights": {
        "task": "learning.optimize_weights",
        "schedule": crontab(hour=3, minute=0),
        "options": {"expires": 3600},
    },
    "learning-fairness-audit": {
        "task": "learning.fairness_audit",
        "schedule": crontab(hour=3, minute=30),
        "options": {"expires": 3600},
    },
}
