"""UserProfile and UserEmbedding SQLAlchemy models"""

from sqlalchemy import Column, Text, BigInteger, Integer, LargeBinary, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from .base import Base, PortableJSONB


class UserProfile(Base):
    """Scoring-relevant profile data owned by the user directory.

    ``segments`` holds demographic metadata used only by fairness reporting,
    e.g. ``{"experience": "senior", "industry": "software"}``.
    """
    __tablename__ = "user_profile"

    user_id = Column(Uuid, primary_key=True)
    display_name = Column(Text, nullable=True)
    interests = Column(PortableJSONB, nullable=False, default=list)
    languages = Column(PortableJSONB, nullable=False, default=list)
    experience_level = Column(Text, nullable=True)
    industry = Column(Text, nullable=True)
    company = Column(Text, nullable=True)
    role = Column(Text, nullable=True)
    timezone = Column(Text, nullable=True)
    org_id = Column(Uuid, nullable=True)
    segments = Column(PortableJSONB, nullable=False, default=dict)
    updated_at = Column(BigInteger, nullable=True)

    embedding = relationship("UserEmbedding", uselist=False, lazy="joined")


class UserEmbedding(Base):
    """Profile embedding stored as a float32 byte buffer."""
    __tablename__ = "user_embedding"

    user_id = Column(Uuid, ForeignKey("user_profile.user_id", ondelete="CASCADE"), primary_key=True)
    model = Column(Text, nullable=False)
    dim = Column(Integer, nullable=False)
    vector = Column(LargeBinary, nullable=False)
    updated_at = Column(BigInteger, nullable=True)
