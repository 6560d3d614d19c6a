"""Correlation-based weight optimization.

For every feature, the Pearson correlation between the recorded feature
value and match success (completed = 1, declined = 0) becomes the raw
weight. Raw weights are clamped to a positive floor so no feature is ever
silenced, then normalized to sum to 1.

The result is only a proposal. It is stored as a ``proposed`` weight
version and has no effect on scoring until an operator promotes it.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
from scipy.stats import pearsonr
from sqlalchemy.orm import Session

from ..matching.errors import InsufficientDataError
from ..matching.ports import FEATURE_NAMES
from ..matching.scorer import weighted_score
from ..models.matching_analytics import MatchingAnalytics
from ..observability import metrics
from ..observability.logging_config import get_logger
from .weights import WeightRegistry, WeightVector

logger = get_logger(__name__)

RESOLVED_OUTCOMES = ("completed", "declined")


def pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson r, defined as 0 when either side has no variance or fewer than 2 points."""
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    if x.shape[0] < 2 or x.shape[0] != y.shape[0]:
        return 0.0
    if np.ptp(x) == 0 or np.ptp(y) == 0:
        return 0.0

    r, _ = pearsonr(x, y)
    if not np.isfinite(r):
        return 0.0
    return float(r)


@dataclass
class OptimizationResult:
    """Proposed weights with the evidence behind them."""
    weights: WeightVector
    improvement: float
    sample_size: int
    correlations: Dict[str, float] = field(default_factory=dict)
    current_accuracy: float = 0.0
    proposed_accuracy: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weights": self.weights.as_dict(),
            "improvement": self.improvement,
            "sample_size": self.sample_size,
            "correlations": dict(self.correlations),
            "current_accuracy": self.current_accuracy,
            "proposed_accuracy": self.proposed_accuracy,
        }


class WeightOptimizer:
    """Derives a weight vector from resolved match outcomes.

    Args:
        floor: Minimum weight of any feature
        decision_threshold: Score above which a match is predicted to succeed
            when comparing the accuracy of two weight vectors
        features: Features to weight
    """

    def __init__(
        self,
        floor: float = 0.01,
        decision_threshold: float = 0.6,
        features: Iterable[str] = FEATURE_NAMES,
    ):
        self.floor = floor
        self.decision_threshold = decision_threshold
        self.features = list(features)

    def optimize(
        self,
        rows: Iterable[MatchingAnalytics],
        current_weights: Mapping[str, float],
        min_samples: int = 100,
    ) -> OptimizationResult:
        """Propose weights from ``rows``; unresolved rows are ignored.

        Raises:
            InsufficientDataError: Fewer than ``min_samples`` resolved rows
        """
        batch = [row for row in rows if row.outcome in RESOLVED_OUTCOMES]
        if len(batch) < min_samples:
            raise InsufficientDataError(len(batch), min_samples)

        correlations = {name: self._correlation(batch, name) for name in self.features}
        raw = {name: max(self.floor, r) for name, r in correlations.items()}
        proposed = WeightVector.from_raw(raw, floor=self.floor)

        current_accuracy = self.accuracy(batch, current_weights)
        proposed_accuracy = self.accuracy(batch, proposed.as_dict())

        return OptimizationResult(
            weights=proposed,
            improvement=proposed_accuracy - current_accuracy,
            sample_size=len(batch),
            correlations=correlations,
            current_accuracy=current_accuracy,
            proposed_accuracy=proposed_accuracy,
        )

    def _correlation(self, batch: List[MatchingAnalytics], name: str) -> float:
        values = []
        successes = []
        for row in batch:
            value = (row.features or {}).get(name)
            if value is None:
                continue
            values.append(float(value))
            successes.append(1.0 if row.outcome == "completed" else 0.0)
        return pearson_correlation(values, successes)

    def accuracy(self, batch: List[MatchingAnalytics], weights: Mapping[str, float]) -> float:
        """Share of rows where ``score > decision_threshold`` agrees with the outcome."""
        if not batch:
            return 0.0
        correct = 0
        for row in batch:
            predicted = weighted_score(row.features or {}, weights) > self.decision_threshold
            correct += predicted == (row.outcome == "completed")
        return correct / len(batch)


class OptimizationService:
    """Loads the training batch and stores the optimizer's proposal.

    Args:
        db: Database session
        floor: Weight floor
        decision_threshold: Accuracy threshold for the improvement estimate
        max_samples: Most recent resolved rows to train on
    """

    def __init__(
        self,
        db: Session,
        floor: float = 0.01,
        decision_threshold: float = 0.6,
        max_samples: int = 5000,
    ):
        self.db = db
        self.max_samples = max_samples
        self.optimizer = WeightOptimizer(floor=floor, decision_threshold=decision_threshold)

    def load_batch(self) -> List[MatchingAnalytics]:
        return (
            self.db.query(MatchingAnalytics)
            .filter(MatchingAnalytics.outcome.in_(RESOLVED_OUTCOMES))
            .order_by(MatchingAnalytics.updated_at.desc())
            .limit(self.max_samples)
            .all()
        )

    def propose(self, min_samples: int, actor: Optional[str] = None, now: Optional[int] = None) -> Dict[str, Any]:
        """Optimize and persist the proposal. Production weights are unchanged.

        Raises:
            InsufficientDataError: Too few resolved rows
        """
        registry = WeightRegistry(self.db, floor=self.optimizer.floor)
        current_version, current_weights = registry.current()

        try:
            result = self.optimizer.optimize(self.load_batch(), current_weights, min_samples)
        except InsufficientDataError:
            metrics.weight_optimizations_total.labels(status="insufficient_data").inc()
            raise

        proposal = registry.propose(
            result.weights,
            sample_size=result.sample_size,
            improvement=result.improvement,
            correlations=result.correlations,
            actor=actor,
            now=now if now is not None else int(time.time() * 1000),
        )
        metrics.weight_optimizations_total.labels(status="proposed").inc()

        report = result.to_dict()
        report.update({
            "status": "proposed",
            "version": proposal.version,
            "current_version": current_version,
        })
        return report

    def run(self, min_samples: int, actor: Optional[str] = None) -> Dict[str, Any]:
        """Scheduled entry point: insufficient data becomes a structured result."""
        try:
            return self.propose(min_samples, actor=actor)
        except InsufficientDataError as e:
            logger.info(f"Weight optimization skipped: {e.message}")
            return {
                "status": "insufficient_data",
                "sample_size": e.sample_size,
                "min_samples": e.min_samples,
            }
