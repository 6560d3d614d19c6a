"""Celery tasks for weight learning and fairness monitoring.

Tasks:
- learning.optimize_weights: daily weight proposal from resolved matches
- learning.fairness_audit: daily per-segment fairness report

Neither task changes production weights; a proposal waits for an operator
to promote it.
"""

import logging
import time
from typing import Any, Dict

from celery import shared_task

from ..config import get_settings
from ..database import SessionLocal
from .fairness import FairnessMonitor
from .optimizer import OptimizationService

logger = logging.getLogger(__name__)


@shared_task(name="learning.optimize_weights", bind=True)
def optimize_weights_task(self, min_samples: int = None) -> Dict[str, Any]:
    """Propose a new weight version from recent resolved matches.

    Returns:
        Dict with ``status`` of ``proposed``, ``insufficient_data`` or ``failed``
    """
    settings = get_settings()

    db = SessionLocal()
    try:
        service = OptimizationService(
            db,
            floor=settings.WEIGHT_FLOOR,
            decision_threshold=settings.OPTIMIZER_DECISION_THRESHOLD,
            max_samples=settings.OPTIMIZER_MAX_SAMPLES,
        )
        result = service.run(min_samples or settings.OPTIMIZER_MIN_SAMPLES, actor="scheduler")
        logger.info(f"Weight optimization finished with status {result['status']}")
        return result

    except Exception as e:
        logger.error("Weight optimization task failed", exc_info=True)
        return {"status": "failed", "error": str(e)}

    finally:
        db.close()


@shared_task(name="learning.fairness_audit", bind=True)
def fairness_audit_task(self, time_range_ms: int = None) -> Dict[str, Any]:
    """Compute the fairness report over the last ``time_range_ms``.

    Bias indicators are logged as warnings and counted in metrics by the
    monitor itself.
    """
    settings = get_settings()
    until = int(time.time() * 1000)
    since = until - (time_range_ms or settings.ANALYTICS_DEFAULT_RANGE_MS)

    db = SessionLocal()
    try:
        monitor = FairnessMonitor(
            db,
            bias_threshold=settings.FAIRNESS_BIAS_THRESHOLD,
            min_segment_size=settings.FAIRNESS_MIN_SEGMENT_SIZE,
        )
        report = monitor.audit(since, until)
        return {
            "status": report.status,
            "since_ms": report.since_ms,
            "until_ms": report.until_ms,
            "segments": len(report.segments),
            "bias_indicators": [
                {
                    "dimension": indicator.dimension,
                    "metric": indicator.metric,
                    "severity": indicator.severity,
                    "disparity": indicator.disparity,
                }
                for indicator in report.bias_indicators
            ],
        }

    except Exception as e:
        logger.error("Fairness audit task failed", exc_info=True)
        return {"status": "failed", "error": str(e)}

    finally:
        db.close()
