"""Unit tests for the matching queue.

Tests cover:
- Enrollment validation and the one-waiting-entry-per-user rule
- Withdrawal and re-enrollment
- Expiry sweep idempotency
- Candidate eligibility (windows, constraints, lookahead)
- Queue position and wait estimates
"""

from uuid import uuid4

import pytest

from linkup.matching.errors import AlreadyQueuedError, InvalidWindowError, NotFoundError
from linkup.matching.ports import QueueConstraints
from linkup.matching.queue import QueueManager, constraints_compatible
from linkup.matching.queue_status import QueueStatus
from linkup.models import AuditLog, MatchingAnalytics, QueueEntry

NOW = 1_700_000_000_000
MINUTE = 60_000
HOUR = 60 * MINUTE


class TestEnroll:
    """Test QueueManager.enroll"""

    def test_enroll_creates_waiting_entry(self, db_session):
        user_id = uuid4()

        entry = QueueManager(db_session).enroll(
            user_id, NOW, NOW + HOUR, QueueConstraints(interests=["ml"], org_constraint="same_org"), now=NOW
        )

        assert entry.status == "waiting"
        assert entry.user_id == user_id
        assert entry.constraints == {"interests": ["ml"], "roles": [], "org_constraint": "same_org"}
        assert entry.created_at == NOW
        assert db_session.query(AuditLog).filter(AuditLog.action == "QUEUE_ENTERED").count() == 1

    def test_second_waiting_entry_rejected(self, db_session, enroll):
        user_id = uuid4()
        enroll(user_id)

        with pytest.raises(AlreadyQueuedError):
            enroll(user_id, now=NOW + 1)

        assert db_session.query(QueueEntry).filter(QueueEntry.user_id == user_id).count() == 1

    def test_window_must_not_be_empty(self, db_session):
        with pytest.raises(InvalidWindowError):
            QueueManager(db_session).enroll(uuid4(), NOW + HOUR, NOW + HOUR, now=NOW)

    def test_window_must_not_be_over(self, db_session):
        with pytest.raises(InvalidWindowError):
            QueueManager(db_session).enroll(uuid4(), NOW - 2 * HOUR, NOW - HOUR, now=NOW)

    def test_window_may_start_in_the_past(self, db_session):
        entry = QueueManager(db_session).enroll(uuid4(), NOW - HOUR, NOW + HOUR, now=NOW)
        assert entry.status == "waiting"

    def test_unknown_org_constraint(self, db_session):
        with pytest.raises(InvalidWindowError):
            QueueManager(db_session).enroll(
                uuid4(), NOW, NOW + HOUR, QueueConstraints(org_constraint="same_team"), now=NOW
            )


class TestWithdraw:
    """Test QueueManager.withdraw"""

    def test_withdraw_cancels_entry(self, db_session, enroll):
        user_id = uuid4()
        enroll(user_id)

        entry = QueueManager(db_session).withdraw(user_id, now=NOW + MINUTE)

        assert entry.status == "cancelled"
        assert entry.updated_at == NOW + MINUTE

    def test_withdraw_without_entry(self, db_session):
        assert QueueManager(db_session).withdraw(uuid4()) is None

    def test_re_enroll_after_withdraw(self, db_session, enroll):
        user_id = uuid4()
        enroll(user_id)
        QueueManager(db_session).withdraw(user_id, now=NOW + 1)

        entry = enroll(user_id, now=NOW + 2)

        assert entry.status == "waiting"
        assert db_session.query(QueueEntry).filter(QueueEntry.user_id == user_id).count() == 2


class TestTransition:
    """Test the compare-and-set status update"""

    def test_second_transition_changes_nothing(self, db_session, enroll):
        entry = enroll(uuid4())
        manager = QueueManager(db_session)

        assert manager.transition(entry.id, QueueStatus.MATCHED, NOW + 1, match_id="match_x") == 1
        assert manager.transition(entry.id, QueueStatus.CANCELLED, NOW + 2) == 0
        db_session.commit()

        db_session.refresh(entry)
        assert entry.status == "matched"
        assert entry.match_id == "match_x"


class TestSweepExpired:
    """Test QueueManager.sweep_expired"""

    def test_expires_entries_past_their_window(self, db_session, enroll):
        stale = enroll(uuid4(), available_to=NOW + HOUR)
        fresh = enroll(uuid4(), available_to=NOW + 3 * HOUR)

        expired = QueueManager(db_session).sweep_expired(NOW + 2 * HOUR)

        assert expired == 1
        db_session.refresh(stale)
        db_session.refresh(fresh)
        assert stale.status == "expired"
        assert fresh.status == "waiting"

    def test_sweep_is_idempotent(self, db_session, enroll):
        enroll(uuid4(), available_to=NOW + HOUR)
        manager = QueueManager(db_session)

        assert manager.sweep_expired(NOW + 2 * HOUR) == 1
        assert manager.sweep_expired(NOW + 2 * HOUR) == 0

    def test_matched_entries_are_not_expired(self, db_session, enroll):
        entry = enroll(uuid4(), available_to=NOW + HOUR)
        manager = QueueManager(db_session)
        manager.transition(entry.id, QueueStatus.MATCHED, NOW + 1)
        db_session.commit()

        assert manager.sweep_expired(NOW + 2 * HOUR) == 0
        db_session.refresh(entry)
        assert entry.status == "matched"


class TestListEligible:
    """Test candidate selection from the waiting queue"""

    def test_excludes_requester_and_orders_oldest_first(self, db_session, enroll):
        requester = uuid4()
        enroll(requester, now=NOW)
        second = enroll(uuid4(), now=NOW + 2)
        first = enroll(uuid4(), now=NOW + 1)

        eligible = QueueManager(db_session).list_eligible(requester, now=NOW + 10)

        assert [e.id for e in eligible] == [first.id, second.id]

    def test_requester_must_be_waiting(self, db_session):
        with pytest.raises(NotFoundError):
            QueueManager(db_session).list_eligible(uuid4(), now=NOW)

    def test_incompatible_interests_excluded(self, db_session, enroll):
        requester = uuid4()
        enroll(requester, interests=["ml"])
        enroll(uuid4(), now=NOW + 1, interests=["cooking"])
        open_minded = enroll(uuid4(), now=NOW + 2)

        eligible = QueueManager(db_session).list_eligible(requester, now=NOW + 10)

        assert [e.id for e in eligible] == [open_minded.id]

    def test_future_window_needs_lookahead(self, db_session, enroll):
        requester = uuid4()
        enroll(requester)
        later = enroll(uuid4(), now=NOW + 1, available_from=NOW + HOUR, available_to=NOW + 3 * HOUR)

        assert QueueManager(db_session).list_eligible(requester, now=NOW + 10) == []
        eligible = QueueManager(db_session, lookahead_ms=2 * HOUR).list_eligible(requester, now=NOW + 10)
        assert [e.id for e in eligible] == [later.id]

    def test_ended_windows_excluded(self, db_session, enroll):
        requester = uuid4()
        enroll(requester, available_to=NOW + 3 * HOUR)
        enroll(uuid4(), now=NOW + 1, available_to=NOW + HOUR)

        assert QueueManager(db_session).list_eligible(requester, now=NOW + 2 * HOUR) == []


class TestListWaiting:
    """Test the open waiting queue listing"""

    def test_open_waiting_entries_oldest_first(self, db_session, enroll):
        second = enroll(uuid4(), now=NOW + 2)
        first = enroll(uuid4(), now=NOW + 1)
        enroll(uuid4(), now=NOW + 3, available_from=NOW + 5 * HOUR, available_to=NOW + 6 * HOUR)
        enroll(uuid4(), now=NOW + 4, available_to=NOW + 5)
        manager = QueueManager(db_session)
        manager.withdraw(enroll(uuid4(), now=NOW + 5).user_id, now=NOW + 6)

        waiting = manager.list_waiting(now=NOW + 10)

        assert [e.id for e in waiting] == [first.id, second.id]

    def test_limit(self, db_session, enroll):
        oldest = enroll(uuid4(), now=NOW + 1)
        enroll(uuid4(), now=NOW + 2)

        assert [e.id for e in QueueManager(db_session).list_waiting(now=NOW + 10, limit=1)] == [oldest.id]


class TestConstraintsCompatible:
    """Test declared preference compatibility"""

    def test_empty_constraints_are_compatible(self):
        assert constraints_compatible(QueueConstraints(), QueueConstraints(interests=["ml"]))

    def test_roles_must_intersect_or_complement(self):
        assert constraints_compatible(QueueConstraints(roles=["mentor"]), QueueConstraints(roles=["mentee"]))
        assert constraints_compatible(QueueConstraints(roles=["mentor"]), QueueConstraints(roles=["Mentor"]))
        assert not constraints_compatible(QueueConstraints(roles=["mentor"]), QueueConstraints(roles=["investor"]))


class TestQueueStatus:
    """Test position and wait estimates"""

    def test_position_counts_older_waiting_entries(self, db_session, enroll):
        enroll(uuid4(), now=NOW)
        user_id = uuid4()
        enroll(user_id, now=NOW + 1)

        report = QueueManager(db_session).queue_status(user_id)

        assert report.position == 2
        assert report.estimated_wait_ms == 2 * 120_000

    def test_estimate_has_a_lower_bound(self, db_session, enroll):
        user_id = uuid4()
        enroll(user_id)

        report = QueueManager(db_session, default_wait_ms=1_000).queue_status(user_id)

        assert report.position == 1
        assert report.estimated_wait_ms == 60_000

    def test_estimate_uses_recent_wait_history(self, db_session, enroll):
        for i, wait in enumerate((300_000, 500_000)):
            db_session.add(
                MatchingAnalytics(
                    match_id=f"match_{i}", user_id=uuid4(), outcome="accepted",
                    features={}, weights={}, wait_ms=wait, created_at=NOW, updated_at=NOW,
                )
            )
        db_session.commit()
        user_id = uuid4()
        enroll(user_id)

        report = QueueManager(db_session).queue_status(user_id)

        assert report.estimated_wait_ms == 400_000

    def test_matched_entry_has_no_position(self, db_session, enroll):
        user_id = uuid4()
        entry = enroll(user_id)
        QueueManager(db_session).transition(entry.id, QueueStatus.MATCHED, NOW + 1)
        db_session.commit()

        report = QueueManager(db_session).queue_status(user_id)

        assert report.entry.status == "matched"
        assert report.position is None

    def test_no_entry(self, db_session):
        assert QueueManager(db_session).queue_status(uuid4()) is None
