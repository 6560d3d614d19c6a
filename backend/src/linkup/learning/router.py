"""Weight learning, fairness and experiment API endpoints.

Everything except reading the current weights is restricted to ADMIN.
"""

import time
from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth.dependencies import CurrentUser, get_current_user, require_role
from ..auth.roles import UserRole
from ..config import get_settings
from ..database import get_db
from .experiments import ExperimentMonitor
from .fairness import FairnessMonitor
from .optimizer import OptimizationService
from .schemas import (
    CurrentWeightsResponse,
    ExperimentCreateRequest,
    ExperimentReportResponse,
    ExperimentSchema,
    FairnessReportResponse,
    OptimizationResponse,
    WeightVersionSchema,
)
from .weights import WeightRegistry


router = APIRouter(prefix="/api/v1/matching", tags=["learning"])


@router.get("/weights/current", response_model=CurrentWeightsResponse)
def current_weights(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Production weights used for scoring."""
    version, weights = WeightRegistry(db).current()
    return CurrentWeightsResponse(version=version, weights=weights)


@router.get("/weights", response_model=List[WeightVersionSchema])
def list_weight_versions(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.ADMIN)),
):
    """Stored weight versions, newest first (ADMIN)."""
    return [WeightVersionSchema(**row.to_dict()) for row in WeightRegistry(db).list_versions(limit)]


@router.post("/weights/optimize", response_model=OptimizationResponse, status_code=status.HTTP_201_CREATED)
def optimize_weights(
    min_samples: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.ADMIN)),
):
    """Propose weights from resolved matches (ADMIN). Does not apply them.

    Raises:
        422 insufficient_data: Fewer resolved matches than ``min_samples``
    """
    settings = get_settings()
    service = OptimizationService(
        db,
        floor=settings.WEIGHT_FLOOR,
        decision_threshold=settings.OPTIMIZER_DECISION_THRESHOLD,
        max_samples=settings.OPTIMIZER_MAX_SAMPLES,
    )
    report = service.propose(min_samples or settings.OPTIMIZER_MIN_SAMPLES, actor=str(current_user.id))
    return OptimizationResponse(**report)


@router.post("/weights/{version}/promote", response_model=WeightVersionSchema)
def promote_weights(
    version: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.ADMIN)),
):
    """Make a proposed version the production weights (ADMIN)."""
    registry = WeightRegistry(db, floor=get_settings().WEIGHT_FLOOR)
    row = registry.promote(version, actor=str(current_user.id))
    return WeightVersionSchema(**row.to_dict())


@router.post("/weights/{version}/reject", response_model=WeightVersionSchema)
def reject_weights(
    version: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.ADMIN)),
):
    """Reject a proposed version (ADMIN)."""
    row = WeightRegistry(db).reject(version, actor=str(current_user.id))
    return WeightVersionSchema(**row.to_dict())


@router.get("/fairness", response_model=FairnessReportResponse)
def fairness_report(
    time_range_ms: Optional[int] = Query(None, gt=0),
    min_segment_size: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.ADMIN)),
):
    """Per-segment match rate, wait time and satisfaction with bias indicators (ADMIN)."""
    settings = get_settings()
    now = int(time.time() * 1000)
    monitor = FairnessMonitor(
        db,
        bias_threshold=settings.FAIRNESS_BIAS_THRESHOLD,
        min_segment_size=min_segment_size or settings.FAIRNESS_MIN_SEGMENT_SIZE,
    )
    report = monitor.audit(now - (time_range_ms or settings.ANALYTICS_DEFAULT_RANGE_MS), now)
    return FairnessReportResponse(**asdict(report))


@router.post("/experiments", response_model=ExperimentSchema, status_code=status.HTTP_201_CREATED)
def create_experiment(
    request: ExperimentCreateRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.ADMIN)),
):
    """Create (and by default start) a weight experiment (ADMIN)."""
    settings = get_settings()
    experiment = ExperimentMonitor(db, floor=settings.WEIGHT_FLOOR).create_experiment(
        key=request.key,
        name=request.name,
        variants=[variant.model_dump() for variant in request.variants],
        significance_level=request.significance_level,
        min_participants=request.min_participants,
        start=request.start,
        actor=str(current_user.id),
    )
    return ExperimentSchema(
        key=experiment.key,
        name=experiment.name,
        status=experiment.status,
        variants=experiment.variants,
        significance_level=experiment.significance_level,
        min_participants=experiment.min_participants,
        created_at=experiment.created_at,
        started_at=experiment.started_at,
    )


@router.get("/experiments/{key}/report", response_model=ExperimentReportResponse)
def experiment_report(
    key: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_role(UserRole.ADMIN)),
):
    """Per-variant results and significance verdict (ADMIN)."""
    report = ExperimentMonitor(db).report(key)
    return ExperimentReportResponse(**asdict(report))
