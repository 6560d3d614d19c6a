"""MatchingAnalytics SQLAlchemy model"""

import uuid

from sqlalchemy import Column, Text, BigInteger, Integer, Float, Index, UniqueConstraint, Uuid

from .base import Base, PortableJSONB


class MatchingAnalytics(Base):
    """Per-participant record of a match and how it turned out.

    One row per (match_id, user_id). The row is written as ``accepted`` when
    the match is committed and later resolved to ``completed`` or
    ``declined``. The feature and weight snapshots are what the weight
    optimizer and the fairness/experiment reports read.
    """
    __tablename__ = "matching_analytics"
    __table_args__ = (
        UniqueConstraint("match_id", "user_id", name="uq_matching_analytics_match_user"),
        Index("ix_matching_analytics_user_id_created_at", "user_id", "created_at"),
        Index("ix_matching_analytics_outcome_created_at", "outcome", "created_at"),
        Index("ix_matching_analytics_experiment", "experiment_key", "variant_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    match_id = Column(Text, nullable=False)
    user_id = Column(Uuid, nullable=False)
    partner_id = Column(Uuid, nullable=True)
    outcome = Column(Text, nullable=False)
    score = Column(Float, nullable=True)
    features = Column(PortableJSONB, nullable=False, default=dict)
    weights = Column(PortableJSONB, nullable=False, default=dict)
    weights_version = Column(Integer, nullable=True)
    experiment_key = Column(Text, nullable=True)
    variant_id = Column(Text, nullable=True)
    wait_ms = Column(BigInteger, nullable=True)
    feedback_rating = Column(Integer, nullable=True)
    feedback_comment = Column(Text, nullable=True)
    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)

    def to_dict(self):
        """Convert analytics row to dictionary representation"""
        return {
            "id": str(self.id),
            "match_id": self.match_id,
            "user_id": str(self.user_id),
            "partner_id": str(self.partner_id) if self.partner_id else None,
            "outcome": self.outcome,
            "score": self.score,
            "features": self.features or {},
            "weights": self.weights or {},
            "weights_version": self.weights_version,
            "experiment_key": self.experiment_key,
            "variant_id": self.variant_id,
            "wait_ms": self.wait_ms,
            "feedback_rating": self.feedback_rating,
            "feedback_comment": self.feedback_comment,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
