"""Matching ports and value types.

The matching core talks to the rest of the product through two narrow ports:
the user directory (profile, interests, embedding, org/role metadata) and the
match notifier (schedules the meeting once a pair is committed).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any
from uuid import UUID

import numpy as np


FEATURE_NAMES = (
    "interest_overlap",
    "experience_gap",
    "industry_match",
    "timezone_compatibility",
    "vector_similarity",
    "org_constraint_match",
    "language_overlap",
    "role_complementarity",
)

ORG_CONSTRAINTS = ("same_org", "different_org")


@dataclass(frozen=True)
class Embedding:
    """Decoded profile embedding.

    Attributes:
        vector: float32 vector
        model: Embedding model tag; vectors from different models are not comparable
    """
    vector: np.ndarray
    model: str

    @property
    def dim(self) -> int:
        return int(self.vector.shape[0])

    @classmethod
    def from_bytes(cls, buffer: bytes, model: str, dim: int) -> "Embedding":
        """Decode a stored float32 buffer.

        Raises:
            ValueError: If the buffer length does not match ``dim``
        """
        vector = np.frombuffer(buffer, dtype=np.float32)
        if vector.shape[0] != dim:
            raise ValueError(
                f"Embedding buffer holds {vector.shape[0]} values, expected {dim}"
            )
        return cls(vector=vector, model=model)


@dataclass
class UserScoringProfile:
    """Everything the feature extractor needs to know about one user.

    Attributes:
        user_id: User UUID
        interests: Profile interests
        languages: Spoken languages
        experience_level: entry|junior|mid|senior|lead|executive
        industry: Professional field (e.g. "software", "marketing")
        company: Employer name
        role: Networking role (e.g. "mentor", "founder")
        timezone: IANA zone name or numeric UTC offset ("+02:00")
        org_id: Organization UUID for org constraints
        embedding: Decoded profile embedding
        segments: Demographic metadata used for fairness reporting only
    """
    user_id: UUID
    interests: List[str] = field(default_factory=list)
    languages: List[str] = field(default_factory=list)
    experience_level: Optional[str] = None
    industry: Optional[str] = None
    company: Optional[str] = None
    role: Optional[str] = None
    timezone: Optional[str] = None
    org_id: Optional[UUID] = None
    embedding: Optional[Embedding] = None
    segments: Dict[str, str] = field(default_factory=dict)


@dataclass
class QueueConstraints:
    """Matching preferences attached to a queue entry."""
    interests: List[str] = field(default_factory=list)
    roles: List[str] = field(default_factory=list)
    org_constraint: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "QueueConstraints":
        data = data or {}
        return cls(
            interests=list(data.get("interests") or []),
            roles=list(data.get("roles") or []),
            org_constraint=data.get("org_constraint"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interests": list(self.interests),
            "roles": list(self.roles),
            "org_constraint": self.org_constraint,
        }


@dataclass(frozen=True)
class CompatibilityFeatures:
    """Per-pair feature vector. Every present value lies in [0, 1].

    ``vector_similarity`` is None when it cannot be computed (missing
    embedding, model mismatch); the scorer then leaves it out entirely.
    """
    interest_overlap: float
    experience_gap: float
    industry_match: float
    timezone_compatibility: float
    org_constraint_match: float
    language_overlap: float
    role_complementarity: float
    vector_similarity: Optional[float] = None

    def as_dict(self) -> Dict[str, float]:
        values = {name: getattr(self, name) for name in FEATURE_NAMES}
        return {name: float(value) for name, value in values.items() if value is not None}


@dataclass(frozen=True)
class FeatureEvidence:
    """Non-numeric evidence behind the features, used for explanations."""
    shared_interests: List[str] = field(default_factory=list)
    shared_languages: List[str] = field(default_factory=list)
    complementary_roles: List[str] = field(default_factory=list)
    same_company: bool = False


@dataclass
class MatchResult:
    """A committed match as seen from the requesting user.

    Attributes:
        match_id: Identifier shared by both queue entries and analytics rows
        user_id: Requesting user
        candidate_id: Matched partner
        score: Compatibility score in [0, 1]
        features: Feature values used for the score
        explanation: Human-readable reasons, strongest first
        weights: Weight vector the score was computed with
        weights_version: Production weight version (0 = built-in defaults)
        experiment_key: Experiment the requester is enrolled in, if any
        variant_id: Experiment variant, if any
    """
    match_id: str
    user_id: UUID
    candidate_id: UUID
    score: float
    features: Dict[str, float]
    explanation: List[str]
    weights: Dict[str, float]
    weights_version: int
    experiment_key: Optional[str] = None
    variant_id: Optional[str] = None
    created_at: Optional[int] = None


class UserDirectoryPort(ABC):
    """Port interface for profile lookups.

    Implementations:
    - SqlUserDirectory: user_profile / user_embedding tables
    - TimeoutUserDirectory: bounded-time wrapper around another directory
    """

    @abstractmethod
    def get_profile(self, user_id: UUID) -> UserScoringProfile:
        """Load the scoring profile of a user.

        Raises:
            NotFoundError: If the user has no profile
            UnavailableError: If the directory cannot answer in time
        """
        pass


class MatchNotifierPort(ABC):
    """Port interface for the match-created event."""

    @abstractmethod
    def notify(self, result: MatchResult) -> None:
        """Emit a match-created event. Called only after the match is committed."""
        pass
