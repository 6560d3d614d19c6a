"""Feedback and match analytics API endpoints.

Global analytics are restricted to ADMIN.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.dependencies import CurrentUser, get_current_user, require_role
from ..auth.roles import UserRole
from ..config import get_settings
from ..database import get_db
from .schemas import (
    FeedbackRequest,
    GlobalAnalyticsResponse,
    MatchAnalyticsSchema,
    MatchingStatsResponse,
)
from .services import MatchAnalyticsService, OutcomeRecorder


router = APIRouter(prefix="/api/v1/matching", tags=["feedback"])


@router.post("/feedback", response_model=MatchAnalyticsSchema)
def submit_feedback(
    request: FeedbackRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Resolve a match and/or rate it.

    Raises:
        404 not_found: The caller has no such match
        422 out_of_range: Rating outside 1..5
        422 invalid_outcome: The match was already resolved differently
    """
    row = OutcomeRecorder(db).submit_feedback(
        current_user.id,
        request.match_id,
        outcome=request.outcome,
        rating=request.rating,
        comment=request.comment,
    )
    return MatchAnalyticsSchema.from_model(row)


@router.get("/history", response_model=List[MatchAnalyticsSchema])
def match_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """The caller's matches, newest first."""
    rows = MatchAnalyticsService.get_history(db, current_user.id, limit=limit, offset=offset)
    return [MatchAnalyticsSchema.from_model(row) for row in rows]


@router.get("/stats", response_model=MatchingStatsResponse)
def matching_stats(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """The caller's matching statistics."""
    return MatchingStatsResponse(**MatchAnalyticsService.get_stats(db, current_user.id))


@router.get("/analytics/global", response_model=GlobalAnalyticsResponse)
def global_analytics(
    time_range_ms: Optional[int] = Query(None, gt=0),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.ADMIN)),
):
    """Outcome distribution, feature importance and daily trends (ADMIN).

    Defaults to the last 7 days.
    """
    time_range_ms = time_range_ms or get_settings().ANALYTICS_DEFAULT_RANGE_MS
    return GlobalAnalyticsResponse(**MatchAnalyticsService.get_global_analytics(db, time_range_ms))
