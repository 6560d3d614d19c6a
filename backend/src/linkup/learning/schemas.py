"""Pydantic schemas for weight, fairness and experiment endpoints."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict


class WeightVersionSchema(BaseModel):
    version: int
    weights: Dict[str, float]
    status: str
    sample_size: Optional[int] = None
    improvement: Optional[float] = None
    created_by: Optional[str] = None
    promoted_by: Optional[str] = None
    created_at: Optional[int] = None
    promoted_at: Optional[int] = None


class CurrentWeightsResponse(BaseModel):
    """Production weights; version 0 means built-in defaults."""
    version: int
    weights: Dict[str, float]


class OptimizationResponse(BaseModel):
    """Stored weight proposal. Production weights are unchanged."""
    status: str
    version: int
    current_version: int
    weights: Dict[str, float]
    improvement: float
    sample_size: int
    correlations: Dict[str, float]
    current_accuracy: float
    proposed_accuracy: float


class SegmentMetricsSchema(BaseModel):
    dimension: str
    value: str
    sample_size: int
    match_rate: Optional[float] = None
    average_wait_ms: Optional[float] = None
    satisfaction: Optional[float] = None


class BiasIndicatorSchema(BaseModel):
    dimension: str
    metric: str
    disparity: float
    severity: str
    best_segment: str
    worst_segment: str
    description: str


class FairnessReportResponse(BaseModel):
    status: str
    since_ms: int
    until_ms: int
    segments: List[SegmentMetricsSchema]
    bias_indicators: List[BiasIndicatorSchema]


class VariantSchema(BaseModel):
    variant_id: str
    allocation: float = Field(ge=0.0, le=100.0)
    weights: Optional[Dict[str, float]] = None


class ExperimentCreateRequest(BaseModel):
    key: str = Field(min_length=1, max_length=100)
    name: str
    variants: List[VariantSchema]
    significance_level: float = 0.05
    min_participants: int = Field(default=100, ge=1)
    start: bool = True


class ExperimentSchema(BaseModel):
    key: str
    name: str
    status: str
    variants: List[VariantSchema]
    significance_level: float
    min_participants: int
    created_at: int
    started_at: Optional[int] = None


class VariantStatsSchema(BaseModel):
    variant_id: str
    allocation: float
    participants: int
    matches: int
    resolved: int
    successes: int
    success_rate: float
    average_rating: Optional[float] = None


class ExperimentReportResponse(BaseModel):
    experiment_key: str
    status: str
    variants: List[VariantStatsSchema]
    p_value: Optional[float] = None
    effect_size: Optional[float] = None
    significant: bool
    winning_variant: Optional[str] = None
    significance_level: float
    min_participants: int
