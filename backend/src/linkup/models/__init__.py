"""SQLAlchemy models for the matching backend"""

from .base import Base, PortableJSONB
from .queue_entry import QueueEntry
from .matching_analytics import MatchingAnalytics
from .weight_version import WeightVersion
from .user_profile import UserProfile, UserEmbedding
from .experiment import Experiment, ExperimentAssignment
from .audit_log import AuditLog

__all__ = [
    "Base",
    "PortableJSONB",
    "QueueEntry",
    "MatchingAnalytics",
    "WeightVersion",
    "UserProfile",
    "UserEmbedding",
    "Experiment",
    "ExperimentAssignment",
    "AuditLog",
]
