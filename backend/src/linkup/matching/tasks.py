"""Celery tasks for the matching queue.

Tasks:
- matching.run_cycle: expire stale entries and match every open waiting entry
- matching.queue_maintenance: expire entries whose window has passed
"""

import logging
from typing import Any, Dict

from celery import shared_task

from ..config import get_settings
from ..database import SessionLocal
from ..dependencies import get_match_notifier, get_user_directory
from .queue import QueueManager
from .selector import MatchSelector

logger = logging.getLogger(__name__)


@shared_task(name="matching.run_cycle", bind=True)
def run_matching_cycle_task(self, max_matches: int = None) -> Dict[str, Any]:
    """Run one matching cycle over the waiting queue.

    Scheduled every 5 minutes via Celery Beat. Each selection commits its
    own pair, so an aborted cycle leaves only complete matches behind.

    Returns:
        Dict with cycle statistics (processed, matches_created, expired, ...)
    """
    settings = get_settings()
    logger.info("Matching cycle task started")

    db = SessionLocal()
    try:
        selector = MatchSelector(
            db,
            get_user_directory(),
            get_match_notifier(),
            min_score=settings.MATCH_MIN_SCORE,
            lookahead_ms=settings.MATCH_LOOKAHEAD_MS,
            max_reasons=settings.EXPLANATION_MAX_REASONS,
        )
        summary = selector.run_cycle(max_matches=max_matches or settings.MATCH_CYCLE_MAX_MATCHES)

        result = {"status": "completed", **summary.to_dict()}
        logger.info("Matching cycle task completed", extra={"duration_ms": summary.duration_ms})
        return result

    except Exception as e:
        logger.error("Matching cycle task failed", exc_info=True)
        return {
            "status": "failed",
            "error": str(e),
            "matches_created": 0,
        }

    finally:
        db.close()


@shared_task(name="matching.queue_maintenance", bind=True)
def queue_maintenance_task(self) -> Dict[str, Any]:
    """Expire waiting entries whose availability window has ended.

    Idempotent: a second run right after the first expires nothing.
    """
    db = SessionLocal()
    try:
        expired = QueueManager(db).sweep_expired()
        logger.info(f"Queue maintenance expired {expired} entries")
        return {"status": "completed", "expired": expired}

    except Exception as e:
        logger.error("Queue maintenance task failed", exc_info=True)
        return {"status": "failed", "error": str(e), "expired": 0}

    finally:
        db.close()
