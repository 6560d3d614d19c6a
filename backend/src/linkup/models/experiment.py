"""Experiment and ExperimentAssignment SQLAlchemy models"""

import uuid

from sqlalchemy import Column, Text, BigInteger, Integer, Float, ForeignKey, UniqueConstraint, Uuid

from .base import Base, PortableJSONB


class Experiment(Base):
    """A/B experiment over scoring weight variants.

    ``variants`` is a list of ``{"variant_id", "allocation", "weights"}``
    where allocations are percentages summing to 100 and ``weights`` is
    optional (a variant without weights uses production weights).
    """
    __tablename__ = "matching_experiment"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    key = Column(Text, nullable=False, unique=True)
    name = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="draft")
    variants = Column(PortableJSONB, nullable=False)
    significance_level = Column(Float, nullable=False, default=0.05)
    min_participants = Column(Integer, nullable=False, default=100)
    created_by = Column(Text, nullable=True)
    created_at = Column(BigInteger, nullable=False)
    started_at = Column(BigInteger, nullable=True)
    ended_at = Column(BigInteger, nullable=True)


class ExperimentAssignment(Base):
    """Sticky variant assignment of a user within an experiment."""
    __tablename__ = "experiment_assignment"
    __table_args__ = (
        UniqueConstraint("experiment_id", "user_id", name="uq_experiment_assignment_user"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    experiment_id = Column(Uuid, ForeignKey("matching_experiment.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid, nullable=False)
    variant_id = Column(Text, nullable=False)
    assigned_at = Column(BigInteger, nullable=False)
