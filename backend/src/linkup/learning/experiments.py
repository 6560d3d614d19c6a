"""A/B experiments over scoring weights.

Users are allocated to variants deterministically: the bucket is derived
from ``sha256(experiment_key:user_id)`` so the same user always lands in the
same variant, and the first allocation is persisted for auditability.
Analytics rows of matches scored with a variant's weights carry the
experiment key and variant id; the report reads only those rows.
"""

import hashlib
import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import UUID

import numpy as np
from scipy.stats import chi2_contingency
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..audit.service import log_audit_event
from ..matching.errors import InvalidStateError, NotFoundError, OutOfRangeError
from ..models.experiment import Experiment, ExperimentAssignment
from ..models.matching_analytics import MatchingAnalytics
from ..observability.logging_config import get_logger
from .weights import WeightVector

logger = get_logger(__name__)

BUCKETS = 10_000
ALLOCATION_TOLERANCE = 1e-6
EXPERIMENT_STATUSES = ("draft", "running", "paused", "completed")
RESOLVED_OUTCOMES = ("completed", "declined")


@dataclass(frozen=True)
class VariantAssignment:
    """Variant a user is enrolled in; ``weights`` is None for a control arm."""
    experiment_key: str
    variant_id: str
    weights: Optional[Dict[str, float]] = None


@dataclass
class VariantStats:
    variant_id: str
    allocation: float
    participants: int = 0
    matches: int = 0
    resolved: int = 0
    successes: int = 0
    success_rate: float = 0.0
    average_rating: Optional[float] = None


@dataclass
class ExperimentReport:
    """Per-variant results plus the significance verdict."""
    experiment_key: str
    status: str
    variants: List[VariantStats] = field(default_factory=list)
    p_value: Optional[float] = None
    effect_size: Optional[float] = None
    significant: bool = False
    winning_variant: Optional[str] = None
    significance_level: float = 0.05
    min_participants: int = 0


def allocation_bucket(experiment_key: str, user_id) -> int:
    digest = hashlib.sha256(f"{experiment_key}:{user_id}".encode("utf-8")).hexdigest()
    return int(digest[:12], 16) % BUCKETS


def pick_variant(variants: List[Dict[str, Any]], bucket: int) -> str:
    """Map a bucket in [0, BUCKETS) onto cumulative variant allocations."""
    cumulative = 0.0
    for variant in variants:
        cumulative += float(variant["allocation"]) * BUCKETS / 100
        if bucket < cumulative:
            return variant["variant_id"]
    return variants[-1]["variant_id"]


def validate_variants(variants: List[Dict[str, Any]], floor: float = 0.01) -> List[Dict[str, Any]]:
    """Check variant definitions and return them in canonical form.

    Raises:
        OutOfRangeError: On duplicate ids, bad allocations or bad weights
    """
    if len(variants) < 2:
        raise OutOfRangeError("An experiment needs at least two variants")

    ids = [v.get("variant_id") for v in variants]
    if any(not variant_id for variant_id in ids) or len(set(ids)) != len(ids):
        raise OutOfRangeError("Variant ids must be present and unique")

    allocations = [float(v.get("allocation", 0)) for v in variants]
    if any(a < 0 for a in allocations):
        raise OutOfRangeError("Variant allocations must be non-negative")
    if abs(sum(allocations) - 100.0) > ALLOCATION_TOLERANCE:
        raise OutOfRangeError(f"Variant allocations must sum to 100, got {sum(allocations)}")

    canonical = []
    for variant, allocation in zip(variants, allocations):
        weights = variant.get("weights")
        if weights is not None:
            weights = WeightVector(weights, floor=floor).as_dict()
        canonical.append({"variant_id": variant["variant_id"], "allocation": allocation, "weights": weights})
    return canonical


class ExperimentMonitor:
    """Create experiments, allocate users and report results.

    Args:
        db: Database session
        floor: Weight floor variant weights must respect
    """

    def __init__(self, db: Session, floor: float = 0.01):
        self.db = db
        self.floor = floor

    def create_experiment(
        self,
        key: str,
        name: str,
        variants: List[Dict[str, Any]],
        significance_level: float = 0.05,
        min_participants: int = 100,
        start: bool = True,
        actor: Optional[str] = None,
        now: Optional[int] = None,
    ) -> Experiment:
        now = now if now is not None else int(time.time() * 1000)
        if not 0 < significance_level < 1:
            raise OutOfRangeError("significance_level must be between 0 and 1")
        if self.db.query(Experiment).filter(Experiment.key == key).first() is not None:
            raise InvalidStateError(f"Experiment {key} already exists")

        experiment = Experiment(
            key=key,
            name=name,
            status="running" if start else "draft",
            variants=validate_variants(variants, self.floor),
            significance_level=significance_level,
            min_participants=min_participants,
            created_by=actor,
            created_at=now,
            started_at=now if start else None,
        )
        self.db.add(experiment)
        self.db.flush()

        log_audit_event(
            self.db,
            action="EXPERIMENT_CREATED",
            actor_id=actor,
            entity_type="experiment",
            entity_id=key,
            metadata={"variants": experiment.variants},
            created_at=now,
        )
        self.db.commit()
        self.db.refresh(experiment)

        logger.info(f"Experiment {key} created", extra={"experiment_key": key})
        return experiment

    def get(self, key: str) -> Experiment:
        experiment = self.db.query(Experiment).filter(Experiment.key == key).first()
        if experiment is None:
            raise NotFoundError(f"Experiment {key} not found")
        return experiment

    def set_status(self, key: str, status: str, now: Optional[int] = None) -> Experiment:
        if status not in EXPERIMENT_STATUSES:
            raise OutOfRangeError(f"Unknown experiment status {status}")
        now = now if now is not None else int(time.time() * 1000)
        experiment = self.get(key)
        if experiment.status == "completed":
            raise InvalidStateError(f"Experiment {key} is completed")

        experiment.status = status
        if status == "running" and experiment.started_at is None:
            experiment.started_at = now
        if status == "completed":
            experiment.ended_at = now
        self.db.commit()
        self.db.refresh(experiment)
        return experiment

    def running_experiment(self) -> Optional[Experiment]:
        """Most recently started running experiment, if any."""
        return (
            self.db.query(Experiment)
            .filter(Experiment.status == "running")
            .order_by(Experiment.started_at.desc())
            .first()
        )

    def assign(self, experiment: Experiment, user_id: UUID, now: Optional[int] = None) -> str:
        """Return the user's variant, persisting the allocation on first sight."""
        existing = (
            self.db.query(ExperimentAssignment)
            .filter(
                ExperimentAssignment.experiment_id == experiment.id,
                ExperimentAssignment.user_id == user_id,
            )
            .first()
        )
        if existing is not None:
            return existing.variant_id

        variant_id = pick_variant(experiment.variants, allocation_bucket(experiment.key, user_id))
        self.db.add(
            ExperimentAssignment(
                experiment_id=experiment.id,
                user_id=user_id,
                variant_id=variant_id,
                assigned_at=now if now is not None else int(time.time() * 1000),
            )
        )
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent first assignment; allocation is deterministic so both agree
            self.db.rollback()
        return variant_id

    def resolve_variant(self, user_id: UUID, now: Optional[int] = None) -> Optional[VariantAssignment]:
        experiment = self.running_experiment()
        if experiment is None:
            return None

        variant_id = self.assign(experiment, user_id, now)
        variant = next(v for v in experiment.variants if v["variant_id"] == variant_id)
        return VariantAssignment(
            experiment_key=experiment.key,
            variant_id=variant_id,
            weights=variant.get("weights"),
        )

    def report(self, key: str) -> ExperimentReport:
        experiment = self.get(key)
        stats = {
            v["variant_id"]: VariantStats(variant_id=v["variant_id"], allocation=v["allocation"])
            for v in experiment.variants
        }

        participants = (
            self.db.query(ExperimentAssignment.variant_id, func.count(ExperimentAssignment.id))
            .filter(ExperimentAssignment.experiment_id == experiment.id)
            .group_by(ExperimentAssignment.variant_id)
            .all()
        )
        for variant_id, count in participants:
            if variant_id in stats:
                stats[variant_id].participants = count

        rows = (
            self.db.query(MatchingAnalytics)
            .filter(MatchingAnalytics.experiment_key == key)
            .all()
        )
        match_ids: Dict[str, set] = {variant_id: set() for variant_id in stats}
        ratings: Dict[str, List[int]] = {variant_id: [] for variant_id in stats}
        for row in rows:
            if row.variant_id not in stats:
                continue
            variant = stats[row.variant_id]
            match_ids[row.variant_id].add(row.match_id)
            if row.outcome in RESOLVED_OUTCOMES:
                variant.resolved += 1
                if row.outcome == "completed":
                    variant.successes += 1
            if row.feedback_rating is not None:
                ratings[row.variant_id].append(row.feedback_rating)

        for variant_id, variant in stats.items():
            variant.matches = len(match_ids[variant_id])
            variant.success_rate = variant.successes / variant.resolved if variant.resolved else 0.0
            if ratings[variant_id]:
                variant.average_rating = float(np.mean(ratings[variant_id]))

        report = ExperimentReport(
            experiment_key=key,
            status=experiment.status,
            variants=list(stats.values()),
            significance_level=experiment.significance_level,
            min_participants=experiment.min_participants,
        )
        self._test_significance(report)
        return report

    def _test_significance(self, report: ExperimentReport) -> None:
        observed = [v for v in report.variants if v.resolved > 0]
        if len(observed) < 2:
            return

        table = np.array([[v.successes, v.resolved - v.successes] for v in observed])
        if (table.sum(axis=0) == 0).any():
            # Every resolved match succeeded (or failed) in every arm; nothing to test
            report.p_value = 1.0
            report.effect_size = 0.0
            return

        chi2, p_value, _, _ = chi2_contingency(table)
        n = table.sum()
        report.p_value = float(p_value)
        report.effect_size = float(math.sqrt(chi2 / (n * (min(table.shape) - 1))))

        enough = all(v.participants >= report.min_participants for v in report.variants)
        report.significant = enough and p_value < report.significance_level
        if report.significant:
            report.winning_variant = max(observed, key=lambda v: v.success_rate).variant_id
