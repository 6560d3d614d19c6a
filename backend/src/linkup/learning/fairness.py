"""Fairness reporting across user segments.

Segments come from the ``segments`` metadata the user directory holds for
each profile (e.g. ``{"experience": "senior", "region": "emea"}``). For each
dimension and value the monitor computes:

- match_rate: matched / (matched + expired) queue entries
- average_wait_ms: time from enrollment to match for matched entries
- satisfaction: mean feedback rating

Disparity of a metric within a dimension is ``(max - min) / max`` over
segments with enough samples. A disparity above the configured threshold
becomes a bias indicator; severity grows with the ratio to the threshold.
The monitor only reads.
"""

import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

import numpy as np
from sqlalchemy.orm import Session

from ..models.matching_analytics import MatchingAnalytics
from ..models.queue_entry import QueueEntry
from ..models.user_profile import UserProfile
from ..observability import metrics
from ..observability.logging_config import get_logger

logger = get_logger(__name__)

TRACKED_METRICS = ("match_rate", "average_wait_ms", "satisfaction")

# (minimum ratio of disparity to threshold, severity), checked in order
SEVERITY_LEVELS = (
    (3.0, "critical"),
    (2.0, "high"),
    (1.5, "medium"),
    (1.0, "low"),
)


@dataclass
class SegmentMetrics:
    dimension: str
    value: str
    sample_size: int = 0
    matched: int = 0
    expired: int = 0
    match_rate: Optional[float] = None
    average_wait_ms: Optional[float] = None
    satisfaction: Optional[float] = None
    ratings: int = 0


@dataclass
class BiasIndicator:
    dimension: str
    metric: str
    disparity: float
    severity: str
    best_segment: str
    worst_segment: str
    description: str


@dataclass
class FairnessReport:
    status: str
    since_ms: int
    until_ms: int
    segments: List[SegmentMetrics] = field(default_factory=list)
    bias_indicators: List[BiasIndicator] = field(default_factory=list)


def severity_for(disparity: float, threshold: float) -> Optional[str]:
    """Severity of a disparity, or None if it does not exceed the threshold."""
    if threshold <= 0 or disparity <= threshold:
        return None
    ratio = disparity / threshold
    for minimum, severity in SEVERITY_LEVELS:
        if ratio >= minimum:
            return severity
    return "low"


def disparity(values: Iterable[float]) -> float:
    values = [v for v in values if v is not None]
    if len(values) < 2:
        return 0.0
    high = max(values)
    if high <= 0:
        return 0.0
    return (high - min(values)) / high


def load_segments(db: Session, user_ids: Iterable[UUID]) -> Dict[UUID, Dict[str, str]]:
    """Segment metadata per user from the user directory tables."""
    user_ids = list(set(user_ids))
    if not user_ids:
        return {}
    rows = (
        db.query(UserProfile.user_id, UserProfile.segments)
        .filter(UserProfile.user_id.in_(user_ids))
        .all()
    )
    return {user_id: dict(segments or {}) for user_id, segments in rows}


class FairnessMonitor:
    """Computes per-segment matching metrics and flags disparities.

    Args:
        db: Database session
        bias_threshold: Disparity above which a bias indicator is raised
        min_segment_size: Segments with fewer resolved entries are reported
            but left out of disparity calculations
    """

    def __init__(self, db: Session, bias_threshold: float = 0.2, min_segment_size: int = 5):
        self.db = db
        self.bias_threshold = bias_threshold
        self.min_segment_size = min_segment_size

    def audit(
        self,
        since_ms: int,
        until_ms: Optional[int] = None,
        dimensions: Optional[List[str]] = None,
    ) -> FairnessReport:
        until_ms = until_ms if until_ms is not None else int(time.time() * 1000)

        entries = (
            self.db.query(QueueEntry)
            .filter(QueueEntry.created_at >= since_ms, QueueEntry.created_at <= until_ms)
            .all()
        )
        ratings = (
            self.db.query(MatchingAnalytics.user_id, MatchingAnalytics.feedback_rating)
            .filter(
                MatchingAnalytics.created_at >= since_ms,
                MatchingAnalytics.created_at <= until_ms,
                MatchingAnalytics.feedback_rating.isnot(None),
            )
            .all()
        )

        segments_by_user = load_segments(
            self.db,
            [e.user_id for e in entries] + [user_id for user_id, _ in ratings],
        )
        segments = self._aggregate(entries, ratings, segments_by_user, dimensions)

        if not segments:
            return FairnessReport(status="no_segments", since_ms=since_ms, until_ms=until_ms)

        indicators = self._indicators(segments)
        for indicator in indicators:
            metrics.bias_indicators_total.labels(
                dimension=indicator.dimension, severity=indicator.severity
            ).inc()
            logger.warning(indicator.description)

        return FairnessReport(
            status="bias_detected" if indicators else "ok",
            since_ms=since_ms,
            until_ms=until_ms,
            segments=segments,
            bias_indicators=indicators,
        )

    def _aggregate(
        self,
        entries: List[QueueEntry],
        ratings: List[Tuple[UUID, int]],
        segments_by_user: Dict[UUID, Dict[str, str]],
        dimensions: Optional[List[str]],
    ) -> List[SegmentMetrics]:
        def keys_for(user_id) -> List[Tuple[str, str]]:
            user_segments = segments_by_user.get(user_id, {})
            return [
                (dimension, str(value))
                for dimension, value in user_segments.items()
                if value is not None and (dimensions is None or dimension in dimensions)
            ]

        stats: Dict[Tuple[str, str], SegmentMetrics] = {}
        waits: Dict[Tuple[str, str], List[int]] = defaultdict(list)
        scores: Dict[Tuple[str, str], List[int]] = defaultdict(list)

        def segment(key) -> SegmentMetrics:
            if key not in stats:
                stats[key] = SegmentMetrics(dimension=key[0], value=key[1])
            return stats[key]

        for entry in entries:
            if entry.status not in ("matched", "expired"):
                continue
            for key in keys_for(entry.user_id):
                metrics_for = segment(key)
                metrics_for.sample_size += 1
                if entry.status == "matched":
                    metrics_for.matched += 1
                    waits[key].append(max(entry.updated_at - entry.created_at, 0))
                else:
                    metrics_for.expired += 1

        for user_id, rating in ratings:
            for key in keys_for(user_id):
                scores[key].append(rating)
                segment(key).ratings += 1

        for key, metrics_for in stats.items():
            if metrics_for.sample_size:
                metrics_for.match_rate = metrics_for.matched / metrics_for.sample_size
            if waits[key]:
                metrics_for.average_wait_ms = float(np.mean(waits[key]))
            if scores[key]:
                metrics_for.satisfaction = float(np.mean(scores[key]))

        return sorted(stats.values(), key=lambda s: (s.dimension, s.value))

    def _indicators(self, segments: List[SegmentMetrics]) -> List[BiasIndicator]:
        by_dimension: Dict[str, List[SegmentMetrics]] = defaultdict(list)
        for item in segments:
            if item.sample_size >= self.min_segment_size:
                by_dimension[item.dimension].append(item)

        indicators = []
        for dimension, items in sorted(by_dimension.items()):
            for metric in TRACKED_METRICS:
                measured = [item for item in items if getattr(item, metric) is not None]
                if len(measured) < 2:
                    continue

                value = disparity(getattr(item, metric) for item in measured)
                severity = severity_for(value, self.bias_threshold)
                if severity is None:
                    continue

                high = max(measured, key=lambda item: getattr(item, metric))
                low = min(measured, key=lambda item: getattr(item, metric))
                indicators.append(
                    BiasIndicator(
                        dimension=dimension,
                        metric=metric,
                        disparity=value,
                        severity=severity,
                        best_segment=low.value if metric == "average_wait_ms" else high.value,
                        worst_segment=high.value if metric == "average_wait_ms" else low.value,
                        description=(
                            f"{metric} differs by {value:.0%} across {dimension} segments "
                            f"({high.value}: {getattr(high, metric):.3g}, {low.value}: {getattr(low, metric):.3g})"
                        ),
                    )
                )
        return indicators
