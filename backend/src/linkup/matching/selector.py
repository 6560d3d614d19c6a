"""Match selection and atomic pair commit.

Selection pass for one requester:
1. Load the requester's waiting entry and profile
2. Resolve the weights (experiment variant or production)
3. Score every eligible candidate; skip unavailable profiles and hard org conflicts
4. Rank by score, then oldest entry first
5. Commit the best candidate; on a lost race try the next one
6. Notify the meeting scheduler after the commit

The commit flips both entries with compare-and-set UPDATEs in one
transaction, ordered by entry id. Either both rows change or the transaction
is rolled back, so a half-matched pair cannot be persisted.
"""

import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..audit.service import log_audit_event
from ..learning.experiments import ExperimentMonitor, VariantAssignment
from ..learning.weights import WeightRegistry
from ..models.matching_analytics import MatchingAnalytics
from ..models.queue_entry import QueueEntry
from ..observability import metrics
from ..observability.logging_config import get_logger
from .errors import NotFoundError, UnavailableError
from .features import FeatureExtraction, FeatureExtractor
from .ports import MatchNotifierPort, MatchResult, QueueConstraints, UserDirectoryPort
from .queue import QueueManager, now_ms
from .queue_status import QueueStatus
from .scorer import CompatibilityScorer, ScoreBreakdown

logger = get_logger(__name__)


@dataclass
class WeightContext:
    """Weights used for one selection pass and where they came from."""
    weights: Dict[str, float]
    version: int
    experiment_key: Optional[str] = None
    variant_id: Optional[str] = None


@dataclass
class RankedCandidate:
    entry: QueueEntry
    extraction: FeatureExtraction
    breakdown: ScoreBreakdown

    @property
    def sort_key(self) -> Tuple[float, int, str]:
        return (-self.breakdown.score, self.entry.created_at, str(self.entry.id))


@dataclass
class CycleSummary:
    """Outcome of one scheduled matching cycle."""
    processed: int = 0
    matches: List[MatchResult] = field(default_factory=list)
    expired: int = 0
    skipped_candidates: int = 0
    unavailable_requesters: int = 0
    duration_ms: int = 0

    @property
    def average_score(self) -> float:
        if not self.matches:
            return 0.0
        return sum(m.score for m in self.matches) / len(self.matches)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "matches_created": len(self.matches),
            "average_score": round(self.average_score, 4),
            "expired": self.expired,
            "skipped_candidates": self.skipped_candidates,
            "unavailable_requesters": self.unavailable_requesters,
            "duration_ms": self.duration_ms,
        }


class MatchSelector:
    """Selects and commits the best partner for a waiting user.

    Args:
        db: Database session (the commit transaction runs on it)
        directory: Profile lookups; wrap in TimeoutUserDirectory in production
        notifier: Match-created event sink, called after commit
        min_score: Candidates must score strictly above this
        lookahead_ms: Passed through to the queue manager
        use_experiments: Resolve weights from a running experiment
        max_reasons: Explanation length
    """

    def __init__(
        self,
        db: Session,
        directory: UserDirectoryPort,
        notifier: Optional[MatchNotifierPort] = None,
        min_score: float = 0.6,
        lookahead_ms: int = 0,
        use_experiments: bool = True,
        max_reasons: int = 3,
        extractor: Optional[FeatureExtractor] = None,
        scorer: Optional[CompatibilityScorer] = None,
    ):
        self.db = db
        self.directory = directory
        self.notifier = notifier
        self.min_score = min_score
        self.use_experiments = use_experiments
        self.queue = QueueManager(db, lookahead_ms=lookahead_ms)
        self.extractor = extractor or FeatureExtractor()
        self.scorer = scorer or CompatibilityScorer(max_reasons=max_reasons)
        self.skipped = Counter()

    def resolve_weights(self, user_id: UUID, now: int) -> WeightContext:
        version, weights = WeightRegistry(self.db).current()
        context = WeightContext(weights=weights, version=version)

        if self.use_experiments:
            variant: Optional[VariantAssignment] = ExperimentMonitor(self.db).resolve_variant(user_id, now)
            if variant is not None:
                context.experiment_key = variant.experiment_key
                context.variant_id = variant.variant_id
                if variant.weights:
                    context.weights = dict(variant.weights)
        return context

    def rank_candidates(self, requester: QueueEntry, weights: Dict[str, float], now: int) -> List[RankedCandidate]:
        """Score eligible candidates and return those above ``min_score``, best first.

        Raises:
            UnavailableError: If the requester's own profile cannot be loaded
        """
        requester_profile = self.directory.get_profile(requester.user_id)
        requester_constraints = QueueConstraints.from_dict(requester.constraints)

        try:
            eligible = self.queue.list_eligible(requester.user_id, now)
        except NotFoundError:
            # Requester stopped waiting after the caller loaded the entry
            return []

        ranked = []
        for candidate in eligible:
            try:
                profile = self.directory.get_profile(candidate.user_id)
            except (UnavailableError, NotFoundError) as e:
                self._skip("unavailable")
                logger.warning(
                    f"Skipping candidate: {e}",
                    extra={"user_id": requester.user_id, "candidate_id": candidate.user_id},
                )
                continue

            extraction = self.extractor.extract(
                requester_profile,
                profile,
                requester_constraints,
                QueueConstraints.from_dict(candidate.constraints),
                at_ms=now,
            )
            if extraction.features.org_constraint_match == 0:
                self._skip("org_constraint")
                continue

            breakdown = self.scorer.score(extraction.features, weights, extraction.evidence)
            if breakdown.score <= self.min_score:
                self._skip("below_threshold")
                continue

            ranked.append(RankedCandidate(entry=candidate, extraction=extraction, breakdown=breakdown))

        ranked.sort(key=lambda c: c.sort_key)
        return ranked

    def select(self, user_id: UUID, now: Optional[int] = None, source: str = "request") -> Optional[MatchResult]:
        """Find and commit a match for ``user_id``.

        Returns None when the user is not waiting, their window is not open,
        or no candidate scores above ``min_score``. The entry then stays
        waiting.

        Raises:
            UnavailableError: If the requester's profile cannot be loaded
            NotFoundError: If the requester has no profile
        """
        now = now if now is not None else now_ms()
        started = time.time()

        requester = self.queue.get_waiting(user_id)
        if requester is None:
            return None
        if not (requester.available_from <= now + self.queue.lookahead_ms and requester.available_to > now):
            return None

        context = self.resolve_weights(user_id, now)
        ranked = self.rank_candidates(requester, context.weights, now)

        requester_id, requester_created = requester.id, requester.created_at
        result = None
        for candidate in ranked:
            result = self._commit(requester_id, user_id, requester_created, candidate, context, now)
            if result is not None:
                break
            if self.queue.get_waiting(user_id) is None:
                # Someone else matched the requester meanwhile
                break

        metrics.selection_duration_seconds.observe(time.time() - started)
        if result is None:
            return None

        metrics.matches_created_total.labels(source=source).inc()
        metrics.match_score.observe(result.score)
        self._notify(result)
        return result

    def _commit(
        self,
        requester_id: UUID,
        requester_user_id: UUID,
        requester_created: int,
        candidate: RankedCandidate,
        context: WeightContext,
        now: int,
    ) -> Optional[MatchResult]:
        candidate_id = candidate.entry.id
        candidate_user_id = candidate.entry.user_id
        candidate_created = candidate.entry.created_at
        match_id = f"match_{uuid.uuid4().hex}"

        sides = {
            requester_id: (requester_user_id, candidate_user_id),
            candidate_id: (candidate_user_id, requester_user_id),
        }
        features = candidate.extraction.features.as_dict()

        try:
            # Fixed lock order across concurrent selectors
            for entry_id in sorted(sides, key=str):
                _, partner = sides[entry_id]
                changed = self.queue.transition(
                    entry_id,
                    QueueStatus.MATCHED,
                    now,
                    matched_with=partner,
                    match_id=match_id,
                )
                if changed != 1:
                    self.db.rollback()
                    metrics.commit_conflicts_total.inc()
                    logger.info(
                        "Match commit lost a race, entry no longer waiting",
                        extra={"entry_id": entry_id},
                    )
                    return None

            for user, partner, created in (
                (requester_user_id, candidate_user_id, requester_created),
                (candidate_user_id, requester_user_id, candidate_created),
            ):
                self.db.add(
                    MatchingAnalytics(
                        match_id=match_id,
                        user_id=user,
                        partner_id=partner,
                        outcome="accepted",
                        score=candidate.breakdown.score,
                        features=features,
                        weights=context.weights,
                        weights_version=context.version,
                        experiment_key=context.experiment_key,
                        variant_id=context.variant_id,
                        wait_ms=max(now - created, 0),
                        created_at=now,
                        updated_at=now,
                    )
                )

            log_audit_event(
                self.db,
                action="MATCH_CREATED",
                actor_id=str(requester_user_id),
                entity_type="match",
                entity_id=match_id,
                metadata={
                    "participants": [str(requester_user_id), str(candidate_user_id)],
                    "score": candidate.breakdown.score,
                    "weights_version": context.version,
                },
                created_at=now,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            metrics.commit_conflicts_total.inc()
            logger.warning("Match commit failed and was rolled back", exc_info=True)
            return None

        logger.info(
            f"Match created with score {candidate.breakdown.score:.3f}",
            extra={"match_id": match_id, "user_id": requester_user_id, "candidate_id": candidate_user_id},
        )
        return MatchResult(
            match_id=match_id,
            user_id=requester_user_id,
            candidate_id=candidate_user_id,
            score=candidate.breakdown.score,
            features=features,
            explanation=list(candidate.breakdown.explanation),
            weights=dict(context.weights),
            weights_version=context.version,
            experiment_key=context.experiment_key,
            variant_id=context.variant_id,
            created_at=now,
        )

    def _notify(self, result: MatchResult) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(result)
        except Exception:
            # The match stands; the scheduler side retries or alerts
            metrics.notifier_failures_total.inc()
            logger.error(
                "Match-created notification failed",
                extra={"match_id": result.match_id},
                exc_info=True,
            )

    def _skip(self, reason: str) -> None:
        self.skipped[reason] += 1
        metrics.candidates_skipped_total.labels(reason=reason).inc()

    def run_cycle(self, now: Optional[int] = None, max_matches: int = 100) -> CycleSummary:
        """Expire stale entries, then try to match every open waiting entry, oldest first."""
        now = now if now is not None else now_ms()
        started = time.time()
        summary = CycleSummary()

        summary.expired = self.queue.sweep_expired(now)
        waiting = [(entry.user_id, entry.id) for entry in self.queue.list_waiting(now)]
        metrics.queue_waiting.set(len(waiting))

        skipped_before = sum(self.skipped.values())
        for user_id, _ in waiting:
            if len(summary.matches) >= max_matches:
                break
            summary.processed += 1
            try:
                result = self.select(user_id, now, source="cycle")
            except (UnavailableError, NotFoundError) as e:
                summary.unavailable_requesters += 1
                logger.warning(f"Skipping requester: {e}", extra={"user_id": user_id})
                continue
            if result is not None:
                summary.matches.append(result)

        summary.skipped_candidates = sum(self.skipped.values()) - skipped_before
        summary.duration_ms = int((time.time() - started) * 1000)
        logger.info("Matching cycle completed", extra={"duration_ms": summary.duration_ms})
        return summary
