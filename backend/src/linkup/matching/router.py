"""Matching queue API endpoints."""

from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth.dependencies import CurrentUser, get_current_user, require_role
from ..auth.roles import UserRole
from ..config import get_settings
from ..database import get_db
from ..dependencies import get_match_selector
from .ports import QueueConstraints
from .queue import QueueManager
from .schemas import (
    CycleResponse,
    EnrollRequest,
    MatchAttemptResponse,
    MatchResultSchema,
    QueueEntrySchema,
    QueueStatusResponse,
    WithdrawResponse,
)
from .selector import MatchSelector


router = APIRouter(prefix="/api/v1/matching", tags=["matching"])


def _queue_manager(db: Session) -> QueueManager:
    settings = get_settings()
    return QueueManager(
        db,
        lookahead_ms=settings.MATCH_LOOKAHEAD_MS,
        default_wait_ms=settings.MATCH_DEFAULT_WAIT_MS,
        min_wait_estimate_ms=settings.MATCH_MIN_WAIT_ESTIMATE_MS,
    )


@router.post("/queue", response_model=QueueEntrySchema, status_code=status.HTTP_201_CREATED)
def enroll(
    request: EnrollRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Join the matching queue.

    Raises:
        409 already_queued: The caller already has a waiting entry
        422 invalid_window: The availability window is malformed
    """
    entry = _queue_manager(db).enroll(
        current_user.id,
        request.available_from,
        request.available_to,
        QueueConstraints(**request.constraints.model_dump()),
    )
    return QueueEntrySchema.from_model(entry)


@router.delete("/queue", response_model=WithdrawResponse)
def withdraw(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Leave the matching queue. Not an error when nothing is waiting."""
    entry = _queue_manager(db).withdraw(current_user.id)
    if entry is None:
        return WithdrawResponse(cancelled=False)
    return WithdrawResponse(cancelled=True, entry=QueueEntrySchema.from_model(entry))


@router.get("/queue/status", response_model=QueueStatusResponse)
def queue_status(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Latest queue entry with queue position and estimated wait."""
    report = _queue_manager(db).queue_status(current_user.id)
    if report is None:
        return QueueStatusResponse()
    return QueueStatusResponse(
        entry=QueueEntrySchema.from_model(report.entry),
        queue_position=report.position,
        estimated_wait_ms=report.estimated_wait_ms,
    )


@router.get("/queue/active", response_model=List[QueueEntrySchema])
def active_queue(
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.ADMIN)),
):
    """Waiting entries whose window is open, oldest first (ADMIN)."""
    return [QueueEntrySchema.from_model(entry) for entry in _queue_manager(db).list_waiting(limit=limit)]


@router.post("/queue/match", response_model=MatchAttemptResponse)
def request_match(
    selector: MatchSelector = Depends(get_match_selector),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Try to match the caller right away.

    Returns ``matched: false`` when no candidate qualifies; the entry stays
    waiting and the scheduled cycle will retry.
    """
    result = selector.select(current_user.id)
    if result is None:
        return MatchAttemptResponse(matched=False)
    return MatchAttemptResponse(
        matched=True,
        match=MatchResultSchema(
            match_id=result.match_id,
            user_id=result.user_id,
            candidate_id=result.candidate_id,
            score=result.score,
            features=result.features,
            explanation=result.explanation,
            weights_version=result.weights_version,
            experiment_key=result.experiment_key,
            variant_id=result.variant_id,
        ),
    )


@router.post("/cycle", response_model=CycleResponse)
def run_cycle(
    selector: MatchSelector = Depends(get_match_selector),
    current_user: CurrentUser = Depends(require_role(UserRole.ADMIN)),
):
    """Run a full matching cycle now (ADMIN)."""
    summary = selector.run_cycle(max_matches=get_settings().MATCH_CYCLE_MAX_MATCHES)
    return CycleResponse(**summary.to_dict())
