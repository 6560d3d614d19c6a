"""Pydantic schemas for feedback and match analytics endpoints."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Literal
from uuid import UUID


class FeedbackRequest(BaseModel):
    """Outcome and/or rating for one of the caller's matches.

    The rating range is checked by the service so that an out-of-range
    value is reported as ``out_of_range`` like every other caller.
    """
    match_id: str
    outcome: Optional[Literal["accepted", "declined", "completed"]] = None
    rating: Optional[int] = None
    comment: Optional[str] = Field(default=None, max_length=2000)


class MatchAnalyticsSchema(BaseModel):
    """One participant's view of a match."""
    match_id: str
    partner_id: Optional[UUID] = None
    outcome: str
    score: Optional[float] = None
    features: Dict[str, float]
    feedback_rating: Optional[int] = None
    feedback_comment: Optional[str] = None
    created_at: int
    updated_at: int

    @classmethod
    def from_model(cls, row) -> "MatchAnalyticsSchema":
        return cls(
            match_id=row.match_id,
            partner_id=row.partner_id,
            outcome=row.outcome,
            score=row.score,
            features=row.features or {},
            feedback_rating=row.feedback_rating,
            feedback_comment=row.feedback_comment,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class TopFeatureSchema(BaseModel):
    feature: str
    average_score: float
    count: int


class MatchingStatsResponse(BaseModel):
    """Per-user matching statistics."""
    total_matches: int
    pending_matches: int
    completed_matches: int
    declined_matches: int
    average_rating: Optional[float] = None
    success_rate: float
    top_features: List[TopFeatureSchema]


class FeatureImportanceSchema(BaseModel):
    feature: str
    average_score: float
    correlation: float


class MatchingTrendSchema(BaseModel):
    date: str
    match_count: int
    average_score: float


class GlobalAnalyticsResponse(BaseModel):
    """Global matching analytics for administrators."""
    time_range_ms: int
    total_matches: int
    total_rows: int
    average_score: float
    outcome_distribution: Dict[str, int]
    feature_importance: List[FeatureImportanceSchema]
    matching_trends: List[MatchingTrendSchema]
