"""Unit tests for match selection and the atomic pair commit.

Tests cover:
- Committing a pair (both entries, analytics rows, audit, notification)
- Threshold, ranking and tie-breaking
- Unavailable or conflicting candidates
- Lost commit races and rollback of half-applied pairs
- Weight versions and experiment variants on analytics rows
- Matching cycles
- Concurrent selections never double-booking a user
"""

from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from linkup.learning.experiments import ExperimentMonitor
from linkup.learning.weights import DEFAULT_WEIGHTS, WeightRegistry, WeightVector
from linkup.matching.errors import UnavailableError
from linkup.matching.queue import QueueManager
from linkup.matching.selector import MatchSelector
from linkup.models import AuditLog, Base, MatchingAnalytics, QueueEntry

NOW = 1_700_000_000_000
MINUTE = 60_000
HOUR = 60 * MINUTE


def entry_of(db_session, user_id):
    return (
        db_session.query(QueueEntry)
        .filter(QueueEntry.user_id == user_id)
        .order_by(QueueEntry.created_at.desc())
        .first()
    )


@pytest.fixture
def selector(db_session, directory, notifier):
    return MatchSelector(db_session, directory, notifier)


class TestSelect:
    """Test MatchSelector.select"""

    def test_commits_both_entries(self, db_session, selector, make_profile, enroll, notifier):
        alice = make_profile().user_id
        bob = make_profile().user_id
        enroll(alice, now=NOW)
        enroll(bob, now=NOW + 1)

        result = selector.select(alice, now=NOW + MINUTE)

        assert result is not None
        assert result.user_id == alice
        assert result.candidate_id == bob
        assert result.score > 0.6
        assert 1 <= len(result.explanation) <= 3
        assert result.match_id.startswith("match_")

        alice_entry, bob_entry = entry_of(db_session, alice), entry_of(db_session, bob)
        assert alice_entry.status == bob_entry.status == "matched"
        assert alice_entry.matched_with == bob
        assert bob_entry.matched_with == alice
        assert alice_entry.match_id == bob_entry.match_id == result.match_id

    def test_writes_accepted_analytics_for_both_participants(self, db_session, selector, make_profile, enroll):
        alice = make_profile().user_id
        bob = make_profile().user_id
        enroll(alice, now=NOW)
        enroll(bob, now=NOW + 1)

        result = selector.select(alice, now=NOW + MINUTE)

        rows = db_session.query(MatchingAnalytics).filter(MatchingAnalytics.match_id == result.match_id).all()
        assert {row.user_id: row.partner_id for row in rows} == {alice: bob, bob: alice}
        assert all(row.outcome == "accepted" for row in rows)
        assert all(row.weights_version == 0 for row in rows)
        assert {row.user_id: row.wait_ms for row in rows} == {alice: MINUTE, bob: MINUTE - 1}
        assert db_session.query(AuditLog).filter(AuditLog.action == "MATCH_CREATED").count() == 1

    def test_notifies_after_commit(self, selector, make_profile, enroll, notifier):
        alice = make_profile().user_id
        bob = make_profile().user_id
        enroll(alice, now=NOW)
        enroll(bob, now=NOW + 1)

        result = selector.select(alice, now=NOW + MINUTE)

        assert [event.match_id for event in notifier.events] == [result.match_id]

    def test_notifier_failure_keeps_the_match(self, db_session, selector, make_profile, enroll, notifier):
        notifier.fail = True
        alice = make_profile().user_id
        bob = make_profile().user_id
        enroll(alice, now=NOW)
        enroll(bob, now=NOW + 1)

        result = selector.select(alice, now=NOW + MINUTE)

        assert result is not None
        assert entry_of(db_session, alice).status == "matched"

    def test_below_threshold_stays_waiting(self, db_session, selector, make_profile, enroll, notifier):
        alice = make_profile().user_id
        stranger = make_profile(
            interests=["cooking"],
            industry="art",
            languages=["ja"],
            experience_level="executive",
            timezone="-08:00",
        ).user_id
        enroll(alice, now=NOW)
        enroll(stranger, now=NOW + 1)

        assert selector.select(alice, now=NOW + MINUTE) is None

        assert entry_of(db_session, alice).status == "waiting"
        assert entry_of(db_session, stranger).status == "waiting"
        assert notifier.events == []
        assert selector.skipped["below_threshold"] == 1

    def test_highest_score_wins_over_older_entry(self, selector, make_profile, enroll):
        alice = make_profile().user_id
        weaker = make_profile(languages=["de"]).user_id
        stronger = make_profile().user_id
        enroll(alice, now=NOW)
        enroll(weaker, now=NOW + 1)
        enroll(stronger, now=NOW + 2)

        result = selector.select(alice, now=NOW + MINUTE)

        assert result.candidate_id == stronger

    def test_equal_scores_prefer_oldest_entry(self, selector, make_profile, enroll):
        alice = make_profile().user_id
        older = make_profile().user_id
        newer = make_profile().user_id
        enroll(alice, now=NOW)
        enroll(newer, now=NOW + 2)
        enroll(older, now=NOW + 1)

        result = selector.select(alice, now=NOW + MINUTE)

        assert result.candidate_id == older

    def test_unavailable_candidate_is_skipped(self, selector, make_profile, enroll, directory):
        alice = make_profile().user_id
        flaky = make_profile().user_id
        steady = make_profile(languages=["de"]).user_id
        enroll(alice, now=NOW)
        enroll(flaky, now=NOW + 1)
        enroll(steady, now=NOW + 2)
        directory.unavailable.add(flaky)

        result = selector.select(alice, now=NOW + MINUTE)

        assert result.candidate_id == steady
        assert selector.skipped["unavailable"] == 1

    def test_unavailable_requester_raises(self, db_session, selector, make_profile, enroll, directory):
        alice = make_profile().user_id
        bob = make_profile().user_id
        enroll(alice, now=NOW)
        enroll(bob, now=NOW + 1)
        directory.unavailable.add(alice)

        with pytest.raises(UnavailableError):
            selector.select(alice, now=NOW + MINUTE)

        assert entry_of(db_session, alice).status == "waiting"

    def test_org_conflict_is_never_matched(self, db_session, selector, make_profile, enroll):
        alice = make_profile(org_id=uuid4()).user_id
        outsider = make_profile(org_id=uuid4()).user_id
        enroll(alice, now=NOW, org_constraint="same_org")
        enroll(outsider, now=NOW + 1)

        assert selector.select(alice, now=NOW + MINUTE) is None
        assert selector.skipped["org_constraint"] == 1

    def test_requester_not_waiting(self, selector):
        assert selector.select(uuid4(), now=NOW) is None

    def test_requester_window_not_open(self, selector, make_profile, enroll):
        alice = make_profile().user_id
        bob = make_profile().user_id
        enroll(alice, now=NOW, available_from=NOW + HOUR, available_to=NOW + 2 * HOUR)
        enroll(bob, now=NOW + 1)

        assert selector.select(alice, now=NOW + MINUTE) is None

    def test_explanation_mentions_shared_interests(self, selector, make_profile, enroll):
        alice = make_profile(role="mentor").user_id
        bob = make_profile(role="mentee").user_id
        enroll(alice, now=NOW)
        enroll(bob, now=NOW + 1)

        result = selector.select(alice, now=NOW + MINUTE)

        assert result.explanation[0] == "Shared interests: machine learning, python"


class TestCommitRaces:
    """Test compare-and-set commit behavior when entries change underneath"""

    def test_lost_race_rolls_back_the_whole_pair(self, db_session, selector, make_profile, enroll):
        alice = make_profile().user_id
        bob = make_profile().user_id
        alice_entry = enroll(alice, now=NOW)
        enroll(bob, now=NOW + 1)
        context = selector.resolve_weights(alice, NOW + MINUTE)
        [candidate] = selector.rank_candidates(alice_entry, context.weights, NOW + MINUTE)

        # Bob leaves between ranking and commit
        QueueManager(db_session).withdraw(bob, now=NOW + MINUTE)

        result = selector._commit(alice_entry.id, alice, NOW, candidate, context, NOW + MINUTE)

        assert result is None
        assert entry_of(db_session, alice).status == "waiting"
        assert entry_of(db_session, alice).match_id is None
        assert db_session.query(MatchingAnalytics).count() == 0

    def test_falls_through_to_next_candidate(self, db_session, selector, make_profile, enroll, monkeypatch):
        alice = make_profile().user_id
        taken = make_profile().user_id
        fallback = make_profile(languages=["de"]).user_id
        enroll(alice, now=NOW)
        taken_entry = enroll(taken, now=NOW + 1)
        enroll(fallback, now=NOW + 2)

        original = selector.queue.transition

        def transition(entry_id, new_status, now, **values):
            if entry_id == taken_entry.id:
                return 0
            return original(entry_id, new_status, now, **values)

        monkeypatch.setattr(selector.queue, "transition", transition)

        result = selector.select(alice, now=NOW + MINUTE)

        assert result.candidate_id == fallback
        assert entry_of(db_session, taken).status == "waiting"


class TestWeightContext:
    """Test which weights score a selection and how they are recorded"""

    def test_promoted_version_is_recorded(self, db_session, selector, make_profile, enroll):
        registry = WeightRegistry(db_session)
        row = registry.propose(WeightVector(DEFAULT_WEIGHTS))
        registry.promote(row.version)
        alice = make_profile().user_id
        bob = make_profile().user_id
        enroll(alice, now=NOW)
        enroll(bob, now=NOW + 1)

        result = selector.select(alice, now=NOW + MINUTE)

        assert result.weights_version == row.version
        versions = {r.weights_version for r in db_session.query(MatchingAnalytics).all()}
        assert versions == {row.version}

    def test_experiment_variant_tags_both_rows(self, db_session, selector, make_profile, enroll):
        ExperimentMonitor(db_session).create_experiment(
            key="interest-heavy",
            name="Interest heavy weights",
            variants=[
                {"variant_id": "control", "allocation": 50},
                {"variant_id": "treatment", "allocation": 50, "weights": DEFAULT_WEIGHTS},
            ],
            now=NOW,
        )
        alice = make_profile().user_id
        bob = make_profile().user_id
        enroll(alice, now=NOW)
        enroll(bob, now=NOW + 1)

        result = selector.select(alice, now=NOW + MINUTE)

        rows = db_session.query(MatchingAnalytics).filter(MatchingAnalytics.match_id == result.match_id).all()
        assert {r.experiment_key for r in rows} == {"interest-heavy"}
        assert {r.variant_id for r in rows} == {result.variant_id}
        assert result.variant_id in ("control", "treatment")

    def test_experiments_can_be_disabled(self, db_session, directory, make_profile, enroll):
        ExperimentMonitor(db_session).create_experiment(
            key="ignored",
            name="Ignored",
            variants=[{"variant_id": "a", "allocation": 50}, {"variant_id": "b", "allocation": 50}],
            now=NOW,
        )
        alice = make_profile().user_id
        bob = make_profile().user_id
        enroll(alice, now=NOW)
        enroll(bob, now=NOW + 1)

        result = MatchSelector(db_session, directory, use_experiments=False).select(alice, now=NOW + MINUTE)

        assert result.experiment_key is None
        assert result.variant_id is None


class TestRunCycle:
    """Test scheduled matching cycles"""

    def test_pairs_everyone_once(self, db_session, selector, make_profile, enroll):
        users = [make_profile().user_id for _ in range(4)]
        for offset, user_id in enumerate(users):
            enroll(user_id, now=NOW + offset)

        summary = selector.run_cycle(now=NOW + MINUTE)

        assert summary.processed == 4
        assert len(summary.matches) == 2
        participants = [u for m in summary.matches for u in (m.user_id, m.candidate_id)]
        assert sorted(participants, key=str) == sorted(users, key=str)
        assert summary.to_dict()["matches_created"] == 2

    def test_expires_before_matching(self, db_session, selector, make_profile, enroll):
        stale = make_profile().user_id
        fresh = make_profile().user_id
        enroll(stale, now=NOW, available_to=NOW + HOUR)
        enroll(fresh, now=NOW + 1, available_to=NOW + 3 * HOUR)

        summary = selector.run_cycle(now=NOW + 2 * HOUR)

        assert summary.expired == 1
        assert summary.matches == []
        assert entry_of(db_session, stale).status == "expired"

    def test_respects_max_matches(self, selector, make_profile, enroll):
        users = [make_profile().user_id for _ in range(6)]
        for offset, user_id in enumerate(users):
            enroll(user_id, now=NOW + offset)

        summary = selector.run_cycle(now=NOW + MINUTE, max_matches=1)

        assert len(summary.matches) == 1

    def test_unavailable_requester_is_counted_and_skipped(self, selector, make_profile, enroll, directory):
        ghost = uuid4()
        users = [make_profile().user_id for _ in range(2)]
        enroll(ghost, now=NOW)
        for offset, user_id in enumerate(users, start=1):
            enroll(user_id, now=NOW + offset)

        summary = selector.run_cycle(now=NOW + MINUTE)

        assert summary.unavailable_requesters == 1
        assert len(summary.matches) == 1


def run_concurrent_selections(tmp_path, directory, users, selections):
    """Enroll ``users`` in a file-backed database and select for them from 10 threads.

    Returns the successful selections with the matched entries and analytics rows.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'queue.db'}",
        connect_args={"timeout": 30, "check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    setup = Session()
    try:
        manager = QueueManager(setup)
        for offset, user_id in enumerate(users):
            manager.enroll(user_id, NOW, NOW + 2 * HOUR, now=NOW + offset)
    finally:
        setup.close()

    def attempt(user_id):
        session = Session()
        try:
            return MatchSelector(session, directory, use_experiments=False).select(user_id, now=NOW + MINUTE)
        finally:
            session.close()

    requests = [users[i % len(users)] for i in range(selections)]
    with ThreadPoolExecutor(max_workers=10) as pool:
        results = [result for result in pool.map(attempt, requests) if result is not None]

    check = Session()
    try:
        matched = check.query(QueueEntry).filter(QueueEntry.status == "matched").all()
        analytics = check.query(MatchingAnalytics).all()
    finally:
        check.close()
        engine.dispose()
    return results, matched, analytics


class TestConcurrentSelection:
    """Concurrent selectors on separate connections never double-book"""

    def test_no_user_in_two_matches(self, tmp_path, directory, make_profile):
        users = [make_profile().user_id for _ in range(20)]

        results, matched, analytics = run_concurrent_selections(tmp_path, directory, users, 100)

        assert results
        participants = [u for r in results for u in (r.user_id, r.candidate_id)]
        assert len(participants) == len(set(participants))

        by_user = {entry.user_id: entry for entry in matched}
        assert len(by_user) == len(matched) == len(participants)
        for entry in matched:
            partner = by_user[entry.matched_with]
            assert partner.matched_with == entry.user_id
            assert partner.match_id == entry.match_id

        assert set(Counter(entry.match_id for entry in matched).values()) == {2}
        assert len(analytics) == len(matched)

    def test_two_users_racing_for_each_other(self, tmp_path, directory, make_profile):
        alice, bob = make_profile().user_id, make_profile().user_id

        results, matched, analytics = run_concurrent_selections(tmp_path, directory, [alice, bob], 100)

        assert len(results) == 1
        assert {results[0].user_id, results[0].candidate_id} == {alice, bob}
        assert len(matched) == 2
        assert {entry.match_id for entry in matched} == {results[0].match_id}
        assert len(analytics) == 2
