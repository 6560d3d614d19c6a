"""Pydantic schemas for queue and match endpoints."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Literal
from uuid import UUID


class QueueConstraintsSchema(BaseModel):
    """Matching preferences for a queue entry."""
    interests: List[str] = Field(default_factory=list)
    roles: List[str] = Field(default_factory=list)
    org_constraint: Optional[Literal["same_org", "different_org"]] = None


class EnrollRequest(BaseModel):
    """Request to join the matching queue (epoch-ms window)."""
    available_from: int = Field(ge=0)
    available_to: int = Field(ge=0)
    constraints: QueueConstraintsSchema = Field(default_factory=QueueConstraintsSchema)


class QueueEntrySchema(BaseModel):
    """Queue entry as returned by the API."""
    id: UUID
    user_id: UUID
    available_from: int
    available_to: int
    constraints: QueueConstraintsSchema
    status: str
    matched_with: Optional[UUID] = None
    match_id: Optional[str] = None
    created_at: int
    updated_at: int

    @classmethod
    def from_model(cls, entry) -> "QueueEntrySchema":
        return cls(
            id=entry.id,
            user_id=entry.user_id,
            available_from=entry.available_from,
            available_to=entry.available_to,
            constraints=QueueConstraintsSchema(**(entry.constraints or {})),
            status=entry.status,
            matched_with=entry.matched_with,
            match_id=entry.match_id,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )


class QueueStatusResponse(BaseModel):
    """Latest queue entry with position and wait estimate while waiting."""
    entry: Optional[QueueEntrySchema] = None
    queue_position: Optional[int] = None
    estimated_wait_ms: Optional[int] = None


class WithdrawResponse(BaseModel):
    """Result of leaving the queue; ``cancelled`` is False when nothing was waiting."""
    cancelled: bool
    entry: Optional[QueueEntrySchema] = None


class MatchResultSchema(BaseModel):
    """A committed match from the caller's perspective."""
    match_id: str
    user_id: UUID
    candidate_id: UUID
    score: float = Field(ge=0.0, le=1.0)
    features: Dict[str, float]
    explanation: List[str]
    weights_version: int
    experiment_key: Optional[str] = None
    variant_id: Optional[str] = None


class MatchAttemptResponse(BaseModel):
    """Selection outcome; ``match`` is None when the caller stays waiting."""
    matched: bool
    match: Optional[MatchResultSchema] = None


class CycleResponse(BaseModel):
    """Summary of a matching cycle."""
    processed: int
    matches_created: int
    average_score: float
    expired: int
    skipped_candidates: int
    unavailable_requesters: int
    duration_ms: int
