"""QueueEntry SQLAlchemy model"""

import uuid

from sqlalchemy import Column, Text, BigInteger, Index, Uuid
from sqlalchemy.sql import text

from .base import Base, PortableJSONB


class QueueEntry(Base):
    """A user's request to be matched within an availability window.

    Status values: waiting, matched, expired, cancelled. Only ``waiting`` is
    non-terminal. All timestamps are epoch milliseconds.
    """
    __tablename__ = "queue_entry"
    __table_args__ = (
        # At most one waiting entry per user
        Index(
            "uq_queue_entry_user_waiting",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'waiting'"),
            sqlite_where=text("status = 'waiting'"),
        ),
        Index("ix_queue_entry_status_created_at", "status", "created_at"),
        Index("ix_queue_entry_status_available_to", "status", "available_to"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False)
    available_from = Column(BigInteger, nullable=False)
    available_to = Column(BigInteger, nullable=False)
    constraints = Column(PortableJSONB, nullable=False, default=dict)
    status = Column(Text, nullable=False, default="waiting")
    matched_with = Column(Uuid, nullable=True)
    match_id = Column(Text, nullable=True)
    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)

    def to_dict(self):
        """Convert queue entry to dictionary representation"""
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "available_from": self.available_from,
            "available_to": self.available_to,
            "constraints": self.constraints or {},
            "status": self.status,
            "matched_with": str(self.matched_with) if self.matched_with else None,
            "match_id": self.match_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
