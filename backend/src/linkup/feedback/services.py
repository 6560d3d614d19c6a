"""Match outcome and feedback services.

This module provides services for:
- Recording match outcomes (accepted, declined, completed)
- Attaching participant feedback (rating 1-5, optional comment)
- Per-user match history and statistics
- Global matching analytics for administrators

Analytics rows are append-only with one merge path: an ``accepted`` row is
resolved in place to ``completed`` or ``declined``, and feedback is merged
into the existing row. Neither creates a second row for the same
(match_id, user_id).
"""

import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

import numpy as np
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..audit.service import log_audit_event
from ..learning.optimizer import pearson_correlation
from ..matching.errors import InvalidOutcomeError, NotFoundError, OutOfRangeError
from ..models.matching_analytics import MatchingAnalytics
from ..observability import metrics
from ..observability.logging_config import get_logger

logger = get_logger(__name__)

OUTCOMES = ("accepted", "declined", "completed")
RESOLUTIONS = ("completed", "declined")
MIN_RATING = 1
MAX_RATING = 5


def _now_ms() -> int:
    return int(time.time() * 1000)


def validate_rating(rating: Any) -> int:
    """Raise OutOfRangeError unless rating is an integer in [1, 5]."""
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise OutOfRangeError(f"Rating must be an integer between {MIN_RATING} and {MAX_RATING}")
    if rating < MIN_RATING or rating > MAX_RATING:
        raise OutOfRangeError(f"Rating must be between {MIN_RATING} and {MAX_RATING}, got {rating}")
    return rating


def validate_outcome(outcome: str) -> str:
    if outcome not in OUTCOMES:
        raise InvalidOutcomeError(f"Outcome must be one of {list(OUTCOMES)}, got {outcome!r}")
    return outcome


def _check_outcome_change(row: MatchingAnalytics, outcome: str) -> bool:
    """Whether ``outcome`` changes the row. Raises if the change is not allowed."""
    if row.outcome == outcome:
        return False
    if row.outcome == "accepted" and outcome in RESOLUTIONS:
        return True
    raise InvalidOutcomeError(
        f"Match {row.match_id} is already {row.outcome} for this user; cannot change to {outcome}"
    )


class OutcomeRecorder:
    """Writes outcomes and feedback to matching_analytics.

    Args:
        db: Database session
    """

    def __init__(self, db: Session):
        self.db = db

    def get_row(self, match_id: str, user_id: UUID) -> Optional[MatchingAnalytics]:
        return (
            self.db.query(MatchingAnalytics)
            .filter(MatchingAnalytics.match_id == match_id, MatchingAnalytics.user_id == user_id)
            .first()
        )

    def record_outcome(
        self,
        match_id: str,
        user_id: UUID,
        outcome: str,
        features: Optional[Dict[str, float]] = None,
        weights: Optional[Dict[str, float]] = None,
        partner_id: Optional[UUID] = None,
        score: Optional[float] = None,
        weights_version: Optional[int] = None,
        now: Optional[int] = None,
    ) -> MatchingAnalytics:
        """Append an outcome row, or resolve the existing ``accepted`` row.

        Raises:
            InvalidOutcomeError: Unknown outcome, or the row is already resolved
            OutOfRangeError: A feature value outside [0, 1]
        """
        validate_outcome(outcome)
        features = dict(features or {})
        for name, value in features.items():
            if value is not None and not 0.0 <= float(value) <= 1.0:
                raise OutOfRangeError(f"Feature {name} must be within [0, 1], got {value}")
        now = now if now is not None else _now_ms()

        existing = self.get_row(match_id, user_id)
        if existing is not None:
            return self._resolve(existing, outcome, now)

        row = MatchingAnalytics(
            match_id=match_id,
            user_id=user_id,
            partner_id=partner_id,
            outcome=outcome,
            score=score,
            features=features,
            weights=dict(weights or {}),
            weights_version=weights_version,
            created_at=now,
            updated_at=now,
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            # Row was written concurrently; fall back to the merge path
            self.db.rollback()
            existing = self.get_row(match_id, user_id)
            if existing is None:
                raise
            return self._resolve(existing, outcome, now)

        self.db.refresh(row)
        metrics.outcomes_recorded_total.labels(outcome=outcome).inc()
        return row

    def _resolve(self, row: MatchingAnalytics, outcome: str, now: int) -> MatchingAnalytics:
        if not _check_outcome_change(row, outcome):
            return row

        previous = row.outcome
        row.outcome = outcome
        row.updated_at = now
        log_audit_event(
            self.db,
            action="OUTCOME_UPDATED",
            actor_id=str(row.user_id),
            entity_type="match",
            entity_id=row.match_id,
            metadata={"from": previous, "to": outcome},
            created_at=now,
        )
        self.db.commit()
        self.db.refresh(row)

        metrics.outcomes_recorded_total.labels(outcome=outcome).inc()
        logger.info(f"Match outcome {previous} -> {outcome}", extra={"match_id": row.match_id, "user_id": row.user_id})
        return row

    def attach_feedback(
        self,
        match_id: str,
        user_id: UUID,
        rating: int,
        comment: Optional[str] = None,
        now: Optional[int] = None,
    ) -> MatchingAnalytics:
        """Merge a rating and comment into the user's row for ``match_id``.

        Raises:
            OutOfRangeError: If rating is not in [1, 5]
            NotFoundError: If there is no row for (match_id, user_id)
        """
        return self.submit_feedback(user_id, match_id, rating=rating, comment=comment, now=now)

    def submit_feedback(
        self,
        user_id: UUID,
        match_id: str,
        outcome: Optional[str] = None,
        rating: Optional[int] = None,
        comment: Optional[str] = None,
        now: Optional[int] = None,
    ) -> MatchingAnalytics:
        """User-facing feedback entry point.

        Optionally resolves the outcome and attaches a rating in a single
        write. Everything is validated before the row is touched.

        Raises:
            OutOfRangeError: If rating is not in [1, 5]
            InvalidOutcomeError: Unknown outcome or the row is already resolved differently
            NotFoundError: If there is no row for (match_id, user_id)
        """
        if rating is not None:
            validate_rating(rating)
        if outcome is not None:
            validate_outcome(outcome)
        now = now if now is not None else _now_ms()

        row = self.get_row(match_id, user_id)
        if row is None:
            raise NotFoundError(f"No match {match_id} recorded for user {user_id}")

        outcome_changed = outcome is not None and _check_outcome_change(row, outcome)
        previous = row.outcome

        if outcome_changed:
            row.outcome = outcome
        if rating is not None:
            row.feedback_rating = rating
        if comment is not None:
            row.feedback_comment = comment
        row.updated_at = now

        log_audit_event(
            self.db,
            action="FEEDBACK_SUBMITTED",
            actor_id=str(user_id),
            entity_type="match",
            entity_id=match_id,
            metadata={"outcome": {"from": previous, "to": outcome} if outcome_changed else None, "rating": rating},
            created_at=now,
        )
        self.db.commit()
        self.db.refresh(row)

        if outcome_changed:
            metrics.outcomes_recorded_total.labels(outcome=outcome).inc()
        logger.info("Match feedback recorded", extra={"match_id": match_id, "user_id": user_id})
        return row


class MatchAnalyticsService:
    """Read-side queries over matching_analytics."""

    @staticmethod
    def get_history(db: Session, user_id: UUID, limit: int = 20, offset: int = 0) -> List[MatchingAnalytics]:
        return (
            db.query(MatchingAnalytics)
            .filter(MatchingAnalytics.user_id == user_id)
            .order_by(MatchingAnalytics.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    @staticmethod
    def get_stats(db: Session, user_id: UUID, top_n: int = 5) -> Dict[str, Any]:
        """Per-user totals, average rating, success rate and strongest features.

        ``success_rate`` is completed / resolved; unresolved matches carry no
        signal yet.
        """
        rows = db.query(MatchingAnalytics).filter(MatchingAnalytics.user_id == user_id).all()

        completed = sum(1 for r in rows if r.outcome == "completed")
        declined = sum(1 for r in rows if r.outcome == "declined")
        pending = sum(1 for r in rows if r.outcome == "accepted")
        ratings = [r.feedback_rating for r in rows if r.feedback_rating is not None]
        resolved = completed + declined

        feature_values: Dict[str, List[float]] = defaultdict(list)
        for row in rows:
            for name, value in (row.features or {}).items():
                if value is not None:
                    feature_values[name].append(float(value))

        top_features = sorted(
            (
                {"feature": name, "average_score": float(np.mean(values)), "count": len(values)}
                for name, values in feature_values.items()
            ),
            key=lambda item: (-item["average_score"], item["feature"]),
        )[:top_n]

        return {
            "total_matches": len(rows),
            "pending_matches": pending,
            "completed_matches": completed,
            "declined_matches": declined,
            "average_rating": float(np.mean(ratings)) if ratings else None,
            "success_rate": completed / resolved if resolved else 0.0,
            "top_features": top_features,
        }

    @staticmethod
    def get_global_analytics(db: Session, time_range_ms: int, now: Optional[int] = None) -> Dict[str, Any]:
        """Outcome distribution, feature importance and daily trends since ``now - time_range_ms``.

        Feature importance is the Pearson correlation between each feature
        and success over resolved rows.
        """
        now = now if now is not None else _now_ms()
        since = now - time_range_ms
        rows = (
            db.query(MatchingAnalytics)
            .filter(MatchingAnalytics.created_at > since, MatchingAnalytics.created_at <= now)
            .all()
        )

        distribution = {outcome: 0 for outcome in OUTCOMES}
        for row in rows:
            distribution[row.outcome] = distribution.get(row.outcome, 0) + 1

        scores = [r.score for r in rows if r.score is not None]

        resolved = [r for r in rows if r.outcome in RESOLUTIONS]
        names = sorted({name for r in rows for name in (r.features or {})})
        importance = []
        for name in names:
            values = [float(r.features[name]) for r in rows if (r.features or {}).get(name) is not None]
            pairs = [
                (float(r.features[name]), 1.0 if r.outcome == "completed" else 0.0)
                for r in resolved
                if (r.features or {}).get(name) is not None
            ]
            correlation = pearson_correlation([p[0] for p in pairs], [p[1] for p in pairs]) if pairs else 0.0
            importance.append({
                "feature": name,
                "average_score": float(np.mean(values)) if values else 0.0,
                "correlation": correlation,
            })
        importance.sort(key=lambda item: (-item["correlation"], item["feature"]))

        daily: Dict[str, List[float]] = defaultdict(list)
        counts: Dict[str, int] = defaultdict(int)
        for row in rows:
            day = datetime.fromtimestamp(row.created_at / 1000, tz=timezone.utc).date().isoformat()
            counts[day] += 1
            if row.score is not None:
                daily[day].append(row.score)
        trends = [
            {
                "date": day,
                "match_count": counts[day],
                "average_score": float(np.mean(daily[day])) if daily[day] else 0.0,
            }
            for day in sorted(counts)
        ]

        return {
            "time_range_ms": time_range_ms,
            "total_matches": len({r.match_id for r in rows}),
            "total_rows": len(rows),
            "average_score": float(np.mean(scores)) if scores else 0.0,
            "outcome_distribution": distribution,
            "feature_importance": importance,
            "matching_trends": trends,
        }
