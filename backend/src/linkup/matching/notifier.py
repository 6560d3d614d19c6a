"""Match-created notification.

The meeting scheduler lives in another service; it is reached by name
through the Celery broker so this package does not import its code.
"""

from celery import Celery

from ..observability.logging_config import get_logger
from .ports import MatchNotifierPort, MatchResult

logger = get_logger(__name__)


def match_event_payload(result: MatchResult) -> dict:
    return {
        "match_id": result.match_id,
        "participants": [str(result.user_id), str(result.candidate_id)],
        "score": result.score,
        "explanation": list(result.explanation),
        "created_at": result.created_at,
    }


class CeleryMatchNotifier(MatchNotifierPort):
    """Sends the match-created event as a Celery task by name.

    Args:
        app: Celery application
        task_name: Registered name of the scheduling task
    """

    def __init__(self, app: Celery, task_name: str = "meetings.schedule_from_match"):
        self.app = app
        self.task_name = task_name

    def notify(self, result: MatchResult) -> None:
        self.app.send_task(self.task_name, kwargs=match_event_payload(result))
        logger.info(
            f"Match-created event sent to {self.task_name}",
            extra={"match_id": result.match_id},
        )
