"""Shared FastAPI dependencies for the matching collaborators.

The directory and notifier are process-wide singletons; tests replace them
through ``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from .config import get_settings
from .database import SessionLocal, get_db
from .matching.directory import SqlUserDirectory, TimeoutUserDirectory
from .matching.notifier import CeleryMatchNotifier
from .matching.ports import MatchNotifierPort, UserDirectoryPort
from .matching.selector import MatchSelector
from .workers.celery_app import celery_app


@lru_cache()
def get_user_directory() -> UserDirectoryPort:
    settings = get_settings()
    return TimeoutUserDirectory(
        SqlUserDirectory(SessionLocal),
        timeout_seconds=settings.DIRECTORY_TIMEOUT_SECONDS,
        max_workers=settings.DIRECTORY_MAX_WORKERS,
    )


@lru_cache()
def get_match_notifier() -> MatchNotifierPort:
    return CeleryMatchNotifier(celery_app, task_name=get_settings().MEETING_SCHEDULER_TASK)


def get_match_selector(
    db: Session = Depends(get_db),
    directory: UserDirectoryPort = Depends(get_user_directory),
    notifier: MatchNotifierPort = Depends(get_match_notifier),
) -> MatchSelector:
    settings = get_settings()
    return MatchSelector(
        db,
        directory,
        notifier,
        min_score=settings.MATCH_MIN_SCORE,
        lookahead_ms=settings.MATCH_LOOKAHEAD_MS,
        max_reasons=settings.EXPLANATION_MAX_REASONS,
    )
