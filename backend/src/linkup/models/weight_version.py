"""WeightVersion SQLAlchemy model"""

import uuid

from sqlalchemy import Column, Text, BigInteger, Integer, Float, Index, Uuid
from sqlalchemy.sql import text

from .base import Base, PortableJSONB


class WeightVersion(Base):
    """A versioned scoring weight vector.

    Status values: proposed, active, retired, rejected. At most one row is
    active; when none is, the built-in default vector applies.
    """
    __tablename__ = "weight_version"
    __table_args__ = (
        Index("uq_weight_version_version", "version", unique=True),
        Index(
            "uq_weight_version_single_active",
            "status",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    version = Column(Integer, nullable=False)
    weights = Column(PortableJSONB, nullable=False)
    status = Column(Text, nullable=False, default="proposed")
    sample_size = Column(Integer, nullable=True)
    improvement = Column(Float, nullable=True)
    correlations = Column(PortableJSONB, nullable=True)
    created_by = Column(Text, nullable=True)
    promoted_by = Column(Text, nullable=True)
    created_at = Column(BigInteger, nullable=False)
    promoted_at = Column(BigInteger, nullable=True)

    def to_dict(self):
        """Convert weight version to dictionary representation"""
        return {
            "version": self.version,
            "weights": self.weights,
            "status": self.status,
            "sample_size": self.sample_size,
            "improvement": self.improvement,
            "correlations": self.correlations,
            "created_by": self.created_by,
            "promoted_by": self.promoted_by,
            "created_at": self.created_at,
            "promoted_at": self.promoted_at,
        }
