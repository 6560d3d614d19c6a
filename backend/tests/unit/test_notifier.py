"""Unit tests for the match-created notifier."""

from uuid import uuid4

from linkup.matching.notifier import CeleryMatchNotifier, match_event_payload
from linkup.matching.ports import MatchResult


class RecordingApp:
    def __init__(self):
        self.sent = []

    def send_task(self, name, kwargs=None):
        self.sent.append((name, kwargs))


def make_result():
    return MatchResult(
        match_id="match_abc",
        user_id=uuid4(),
        candidate_id=uuid4(),
        score=0.8,
        features={"interest_overlap": 1.0},
        explanation=["Shared interests: python"],
        weights={"interest_overlap": 1.0},
        weights_version=0,
        created_at=1_700_000_000_000,
    )


class TestCeleryMatchNotifier:
    def test_payload_lists_both_participants(self):
        result = make_result()

        payload = match_event_payload(result)

        assert payload["participants"] == [str(result.user_id), str(result.candidate_id)]
        assert payload["explanation"] == ["Shared interests: python"]

    def test_sends_task_by_name(self):
        app = RecordingApp()
        result = make_result()

        CeleryMatchNotifier(app, task_name="meetings.schedule_from_match").notify(result)

        [(name, kwargs)] = app.sent
        assert name == "meetings.schedule_from_match"
        assert kwargs["match_id"] == "match_abc"
