"""Scoring weight vectors and the versioned production weight registry.

Production weights are an explicit, versioned record: the optimizer only
ever writes ``proposed`` versions, and an operator promotes one to
``active``. When nothing has been promoted the built-in defaults apply and
are reported as version 0.
"""

import time
from typing import Dict, List, Mapping, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..audit.service import log_audit_event
from ..matching.errors import InvalidStateError, NotFoundError, OutOfRangeError
from ..matching.ports import FEATURE_NAMES
from ..models.weight_version import WeightVersion
from ..observability.logging_config import get_logger

logger = get_logger(__name__)


DEFAULT_WEIGHTS: Dict[str, float] = {
    "interest_overlap": 0.25,
    "experience_gap": 0.15,
    "industry_match": 0.10,
    "timezone_compatibility": 0.10,
    "vector_similarity": 0.20,
    "org_constraint_match": 0.05,
    "language_overlap": 0.10,
    "role_complementarity": 0.05,
}

DEFAULT_VERSION = 0
SUM_TOLERANCE = 1e-9


class WeightVector:
    """Immutable mapping feature -> weight that sums to 1 with every weight >= floor.

    Example:
        WeightVector.from_raw({"interest_overlap": 0.4, "experience_gap": 0.0}, floor=0.01)
    """

    def __init__(self, weights: Mapping[str, float], floor: float = 0.01):
        self._weights = {name: float(value) for name, value in weights.items()}
        self.floor = floor
        self.validate()

    @classmethod
    def from_raw(cls, raw: Mapping[str, float], floor: float = 0.01) -> "WeightVector":
        """Clamp raw weights to the floor and normalize them to sum to 1."""
        return cls(normalize_with_floor(raw, floor), floor=floor)

    def validate(self) -> None:
        """Raise OutOfRangeError unless the vector is well-formed."""
        if not self._weights:
            raise OutOfRangeError("Weight vector is empty")
        unknown = set(self._weights) - set(FEATURE_NAMES)
        if unknown:
            raise OutOfRangeError(f"Unknown features in weight vector: {sorted(unknown)}")
        below = [name for name, value in self._weights.items() if value < self.floor - SUM_TOLERANCE]
        if below:
            raise OutOfRangeError(f"Weights below floor {self.floor}: {sorted(below)}")
        total = sum(self._weights.values())
        if abs(total - 1.0) > SUM_TOLERANCE:
            raise OutOfRangeError(f"Weights must sum to 1, got {total}")

    def as_dict(self) -> Dict[str, float]:
        return dict(self._weights)

    def __getitem__(self, name: str) -> float:
        return self._weights[name]

    def __iter__(self):
        return iter(self._weights)

    def __len__(self) -> int:
        return len(self._weights)

    def __repr__(self) -> str:
        return f"WeightVector({self._weights!r})"


def normalize_with_floor(raw: Mapping[str, float], floor: float = 0.01) -> Dict[str, float]:
    """Normalize weights to sum to 1 while keeping every weight >= floor.

    Each feature first receives ``floor``; the remaining ``1 - n * floor`` is
    shared in proportion to how far the clamped raw weight exceeds the floor.
    A feature whose raw weight is at or below the floor therefore ends at
    exactly ``floor``. If no feature exceeds the floor the result is uniform.

    Raises:
        OutOfRangeError: If the vector is empty or n * floor > 1
    """
    names = list(raw)
    n = len(names)
    if n == 0:
        raise OutOfRangeError("Weight vector is empty")
    if n * floor > 1.0 + SUM_TOLERANCE:
        raise OutOfRangeError(f"Floor {floor} is too large for {n} features")

    excess = {name: max(float(raw[name]), floor) - floor for name in names}
    total_excess = sum(excess.values())
    remaining = 1.0 - n * floor

    if total_excess <= 0:
        return {name: 1.0 / n for name in names}

    weights = {name: floor + remaining * excess[name] / total_excess for name in names}

    # Fold rounding residue into the largest weight so the sum is exactly 1
    residue = 1.0 - sum(weights.values())
    largest = max(names, key=lambda name: weights[name])
    weights[largest] += residue
    return weights


class WeightRegistry:
    """Read and manage versioned production weights.

    Args:
        db: Database session
        floor: Minimum weight a stored vector must respect on promotion
    """

    def __init__(self, db: Session, floor: float = 0.01):
        self.db = db
        self.floor = floor

    def current(self) -> Tuple[int, Dict[str, float]]:
        """Return (version, weights) of the production vector."""
        active = (
            self.db.query(WeightVersion)
            .filter(WeightVersion.status == "active")
            .first()
        )
        if active is None:
            return DEFAULT_VERSION, dict(DEFAULT_WEIGHTS)
        return active.version, dict(active.weights)

    def get(self, version: int) -> WeightVersion:
        row = self.db.query(WeightVersion).filter(WeightVersion.version == version).first()
        if row is None:
            raise NotFoundError(f"Weight version {version} not found")
        return row

    def list_versions(self, limit: int = 50) -> List[WeightVersion]:
        return (
            self.db.query(WeightVersion)
            .order_by(WeightVersion.version.desc())
            .limit(limit)
            .all()
        )

    def _next_version(self) -> int:
        latest = self.db.query(func.max(WeightVersion.version)).scalar() or DEFAULT_VERSION
        return latest + 1

    def propose(
        self,
        weights: WeightVector,
        sample_size: Optional[int] = None,
        improvement: Optional[float] = None,
        correlations: Optional[Dict[str, float]] = None,
        actor: Optional[str] = None,
        now: Optional[int] = None,
    ) -> WeightVersion:
        """Store a candidate vector as a new ``proposed`` version.

        Production weights are not touched. A version number taken by a
        concurrent proposal is retried once with the next free number.

        Raises:
            InvalidStateError: If the version number is still taken on retry
        """
        now = now if now is not None else int(time.time() * 1000)

        for attempt in range(2):
            row = WeightVersion(
                version=self._next_version(),
                weights=weights.as_dict(),
                status="proposed",
                sample_size=sample_size,
                improvement=improvement,
                correlations=correlations,
                created_by=actor,
                created_at=now,
            )
            self.db.add(row)
            try:
                self.db.flush()
                break
            except IntegrityError:
                self.db.rollback()
                logger.warning(
                    f"Weight version {row.version} taken by a concurrent proposal",
                    extra={"version": row.version, "attempt": attempt + 1},
                )
        else:
            raise InvalidStateError("Concurrent weight proposals collided; retry the optimization")

        log_audit_event(
            self.db,
            action="WEIGHTS_PROPOSED",
            actor_id=actor,
            entity_type="weight_version",
            entity_id=str(row.version),
            metadata={"sample_size": sample_size, "improvement": improvement},
            created_at=now,
        )
        self.db.commit()
        self.db.refresh(row)

        logger.info(
            f"Proposed weight version {row.version}",
            extra={"version": row.version, "sample_size": sample_size, "improvement": improvement},
        )
        return row

    def promote(self, version: int, actor: Optional[str] = None, now: Optional[int] = None) -> WeightVersion:
        """Make ``version`` the single active production vector.

        The previously active version is retired in the same transaction.

        Raises:
            NotFoundError: If the version does not exist
            InvalidStateError: If the version was rejected
        """
        now = now if now is not None else int(time.time() * 1000)
        row = self.get(version)
        if row.status == "active":
            return row
        if row.status == "rejected":
            raise InvalidStateError(f"Weight version {version} was rejected and cannot be promoted")

        # Re-validate before it can affect production scoring
        WeightVector(row.weights, floor=self.floor)

        self.db.execute(
            update(WeightVersion)
            .where(WeightVersion.status == "active")
            .values(status="retired")
        )
        row.status = "active"
        row.promoted_by = actor
        row.promoted_at = now
        self.db.flush()

        log_audit_event(
            self.db,
            action="WEIGHTS_PROMOTED",
            actor_id=actor,
            entity_type="weight_version",
            entity_id=str(version),
            metadata={"weights": row.weights},
            created_at=now,
        )
        self.db.commit()
        self.db.refresh(row)

        logger.info(f"Promoted weight version {version}", extra={"version": version})
        return row

    def reject(self, version: int, actor: Optional[str] = None) -> WeightVersion:
        """Mark a proposed version as rejected.

        Raises:
            NotFoundError: If the version does not exist
            InvalidStateError: If the version is not ``proposed``
        """
        row = self.get(version)
        if row.status != "proposed":
            raise InvalidStateError(f"Only proposed versions can be rejected, {version} is {row.status}")
        row.status = "rejected"
        self.db.flush()

        log_audit_event(
            self.db,
            action="WEIGHTS_REJECTED",
            actor_id=actor,
            entity_type="weight_version",
            entity_id=str(version),
        )
        self.db.commit()
        self.db.refresh(row)
        logger.info(f"Rejected weight version {version}", extra={"version": version, "actor": actor})
        return row
