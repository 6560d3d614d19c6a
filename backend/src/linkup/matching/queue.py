"""Matching queue management.

Every state change of a queue entry is a conditional UPDATE guarded on
``status = 'waiting'``. Whoever flips the row first wins; everyone else sees
a rowcount of 0. There are no in-process locks, so any number of API workers
and scheduled jobs can share the queue.
"""

import time
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..audit.service import log_audit_event
from ..models.matching_analytics import MatchingAnalytics
from ..models.queue_entry import QueueEntry
from ..observability import metrics
from ..observability.logging_config import get_logger
from .errors import AlreadyQueuedError, InvalidWindowError, NotFoundError
from .features import complementary_pairs
from .ports import ORG_CONSTRAINTS, QueueConstraints
from .queue_status import QueueStatus, validate_transition

logger = get_logger(__name__)

WAIT_HISTORY_SAMPLE = 200


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class QueueStatusReport:
    """A user's latest queue entry with position and wait estimate.

    ``position`` and ``estimated_wait_ms`` are only set while waiting.
    """
    entry: QueueEntry
    position: Optional[int] = None
    estimated_wait_ms: Optional[int] = None


def _lower(values) -> set:
    return {str(v).strip().lower() for v in values or [] if str(v).strip()}


def constraints_compatible(a: QueueConstraints, b: QueueConstraints) -> bool:
    """Whether two entries' declared preferences can be satisfied together.

    Interests must intersect unless either side declared none. Roles must
    intersect or form a complementary pair unless either side declared none.
    """
    interests_a, interests_b = _lower(a.interests), _lower(b.interests)
    if interests_a and interests_b and not interests_a & interests_b:
        return False

    roles_a, roles_b = _lower(a.roles), _lower(b.roles)
    if roles_a and roles_b:
        if not roles_a & roles_b and not complementary_pairs(list(roles_a), list(roles_b)):
            return False

    return True


def windows_overlap(a: QueueEntry, b: QueueEntry) -> bool:
    return a.available_from < b.available_to and b.available_from < a.available_to


class QueueManager:
    """Enroll, withdraw, expire and look up queue entries.

    Args:
        db: Database session
        lookahead_ms: Candidates whose window opens within this horizon are eligible
        default_wait_ms: Per-position wait estimate when there is no match history
        min_wait_estimate_ms: Lower bound of any wait estimate
    """

    def __init__(
        self,
        db: Session,
        lookahead_ms: int = 0,
        default_wait_ms: int = 120_000,
        min_wait_estimate_ms: int = 60_000,
    ):
        self.db = db
        self.lookahead_ms = lookahead_ms
        self.default_wait_ms = default_wait_ms
        self.min_wait_estimate_ms = min_wait_estimate_ms

    def get_waiting(self, user_id: UUID) -> Optional[QueueEntry]:
        return (
            self.db.query(QueueEntry)
            .filter(QueueEntry.user_id == user_id, QueueEntry.status == QueueStatus.WAITING.value)
            .first()
        )

    def enroll(
        self,
        user_id: UUID,
        available_from: int,
        available_to: int,
        constraints: Optional[QueueConstraints] = None,
        now: Optional[int] = None,
    ) -> QueueEntry:
        """Put a user into the waiting queue.

        Raises:
            InvalidWindowError: If the window is empty or already over, or
                the org constraint is unknown
            AlreadyQueuedError: If the user already has a waiting entry
        """
        now = now if now is not None else now_ms()
        constraints = constraints or QueueConstraints()

        if available_to <= available_from:
            raise InvalidWindowError("available_to must be after available_from")
        if available_to <= now:
            raise InvalidWindowError("Availability window has already ended")
        if constraints.org_constraint is not None and constraints.org_constraint not in ORG_CONSTRAINTS:
            raise InvalidWindowError(
                f"org_constraint must be one of {list(ORG_CONSTRAINTS)} or null"
            )

        if self.get_waiting(user_id) is not None:
            raise AlreadyQueuedError(f"User {user_id} already has a waiting queue entry")

        entry = QueueEntry(
            user_id=user_id,
            available_from=available_from,
            available_to=available_to,
            constraints=constraints.to_dict(),
            status=QueueStatus.WAITING.value,
            created_at=now,
            updated_at=now,
        )
        self.db.add(entry)
        try:
            self.db.flush()
        except IntegrityError:
            # A concurrent enroll won the partial unique index
            self.db.rollback()
            raise AlreadyQueuedError(f"User {user_id} already has a waiting queue entry")

        log_audit_event(
            self.db,
            action="QUEUE_ENTERED",
            actor_id=str(user_id),
            entity_type="queue_entry",
            entity_id=str(entry.id),
            metadata={"available_from": available_from, "available_to": available_to},
            created_at=now,
        )
        self.db.commit()
        self.db.refresh(entry)

        metrics.queue_entries_total.labels(transition="entered").inc()
        logger.info("User entered matching queue", extra={"user_id": user_id, "entry_id": entry.id})
        return entry

    def withdraw(self, user_id: UUID, now: Optional[int] = None) -> Optional[QueueEntry]:
        """Cancel the user's waiting entry.

        Returns the cancelled entry, or None when there was nothing to cancel
        (including losing a race against a match commit or expiry).
        """
        now = now if now is not None else now_ms()
        entry = self.get_waiting(user_id)
        if entry is None:
            return None

        if self.transition(entry.id, QueueStatus.CANCELLED, now) != 1:
            self.db.rollback()
            return None

        log_audit_event(
            self.db,
            action="QUEUE_CANCELLED",
            actor_id=str(user_id),
            entity_type="queue_entry",
            entity_id=str(entry.id),
            created_at=now,
        )
        self.db.commit()
        self.db.refresh(entry)

        metrics.queue_entries_total.labels(transition="cancelled").inc()
        logger.info("User left matching queue", extra={"user_id": user_id, "entry_id": entry.id})
        return entry

    def transition(self, entry_id: UUID, new_status: QueueStatus, now: int, **values) -> int:
        """Compare-and-set ``waiting -> new_status`` for one entry.

        Does not commit. Returns the number of rows changed (0 or 1).
        """
        validate_transition(QueueStatus.WAITING, new_status)
        result = self.db.execute(
            update(QueueEntry)
            .where(QueueEntry.id == entry_id, QueueEntry.status == QueueStatus.WAITING.value)
            .values(status=new_status.value, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def sweep_expired(self, now: Optional[int] = None) -> int:
        """Expire every waiting entry whose window has ended.

        Idempotent: a second run at the same ``now`` changes nothing. Entries
        already matched are not waiting and are left alone.
        """
        now = now if now is not None else now_ms()
        validate_transition(QueueStatus.WAITING, QueueStatus.EXPIRED)

        result = self.db.execute(
            update(QueueEntry)
            .where(
                QueueEntry.status == QueueStatus.WAITING.value,
                QueueEntry.available_to < now,
            )
            .values(status=QueueStatus.EXPIRED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        expired = result.rowcount or 0
        if expired:
            metrics.queue_entries_total.labels(transition="expired").inc(expired)
            logger.info(f"Expired {expired} queue entries")
        return expired

    def list_eligible(self, user_id: UUID, now: Optional[int] = None) -> List[QueueEntry]:
        """Waiting entries of other users that may be paired with ``user_id``.

        Ordered oldest first.

        Raises:
            NotFoundError: If the user has no waiting entry
        """
        now = now if now is not None else now_ms()
        requester = self.get_waiting(user_id)
        if requester is None:
            raise NotFoundError(f"User {user_id} has no waiting queue entry")

        candidates = (
            self.db.query(QueueEntry)
            .filter(
                QueueEntry.status == QueueStatus.WAITING.value,
                QueueEntry.user_id != user_id,
                QueueEntry.available_from <= now + self.lookahead_ms,
                QueueEntry.available_to > now,
            )
            .order_by(QueueEntry.created_at.asc(), QueueEntry.id.asc())
            .all()
        )

        requester_constraints = QueueConstraints.from_dict(requester.constraints)
        return [
            candidate
            for candidate in candidates
            if windows_overlap(requester, candidate)
            and constraints_compatible(requester_constraints, QueueConstraints.from_dict(candidate.constraints))
        ]

    def list_waiting(self, now: Optional[int] = None, limit: Optional[int] = None) -> List[QueueEntry]:
        """Waiting entries whose window is open, oldest first."""
        now = now if now is not None else now_ms()
        query = (
            self.db.query(QueueEntry)
            .filter(
                QueueEntry.status == QueueStatus.WAITING.value,
                QueueEntry.available_from <= now + self.lookahead_ms,
                QueueEntry.available_to > now,
            )
            .order_by(QueueEntry.created_at.asc(), QueueEntry.id.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def queue_status(self, user_id: UUID, now: Optional[int] = None) -> Optional[QueueStatusReport]:
        """Latest non-cancelled entry of the user, with position while waiting."""
        entry = (
            self.db.query(QueueEntry)
            .filter(
                QueueEntry.user_id == user_id,
                QueueEntry.status != QueueStatus.CANCELLED.value,
            )
            .order_by(QueueEntry.created_at.desc())
            .first()
        )
        if entry is None:
            return None
        if entry.status != QueueStatus.WAITING.value:
            return QueueStatusReport(entry=entry)

        ahead = (
            self.db.query(func.count(QueueEntry.id))
            .filter(
                QueueEntry.status == QueueStatus.WAITING.value,
                QueueEntry.created_at < entry.created_at,
            )
            .scalar()
        )
        position = (ahead or 0) + 1
        return QueueStatusReport(
            entry=entry,
            position=position,
            estimated_wait_ms=max(self.min_wait_estimate_ms, position * self._per_position_wait_ms()),
        )

    def _per_position_wait_ms(self) -> int:
        recent = (
            self.db.query(MatchingAnalytics.wait_ms)
            .filter(MatchingAnalytics.wait_ms.isnot(None))
            .order_by(MatchingAnalytics.created_at.desc())
            .limit(WAIT_HISTORY_SAMPLE)
            .subquery()
        )
        average = self.db.query(func.avg(recent.c.wait_ms)).scalar()
        if average is None:
            return self.default_wait_ms
        return int(average)
