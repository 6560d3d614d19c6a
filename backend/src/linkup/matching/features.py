"""Pairwise compatibility feature extraction.

Turns two scoring profiles plus their queue constraints into a
CompatibilityFeatures vector. Every function here is pure; embeddings arrive
already decoded.

Feature rules:
- interest_overlap: 0.7 * profile overlap + 0.3 * constraint overlap, capped at 1
- experience_gap: 1-2 levels apart is ideal (mentorship), same level 0.7
- industry_match: same field 1.0, related field family 0.8, same company 0.9
- timezone_compatibility: 1 - |offset difference| / 12h
- vector_similarity: cosine mapped to [0, 1], same embedding model only
- org_constraint_match: same_org / different_org evaluated on org ids
- language_overlap: shared languages over the larger list
- role_complementarity: complementary pair 1.0, same role 0.7
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Optional, List, Iterable, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import numpy as np

from .ports import (
    CompatibilityFeatures,
    Embedding,
    FeatureEvidence,
    QueueConstraints,
    UserScoringProfile,
)


NEUTRAL = 0.5

EXPERIENCE_LEVELS = {
    "entry": 1,
    "junior": 2,
    "mid": 3,
    "senior": 4,
    "lead": 5,
    "executive": 6,
}
UNKNOWN_EXPERIENCE_LEVEL = 3

RELATED_FIELDS = {
    "technology": ["software", "engineering", "data", "ai", "ml"],
    "business": ["marketing", "sales", "finance", "consulting"],
    "design": ["ux", "ui", "product", "creative"],
}

COMPLEMENTARY_ROLES = {
    "mentor": ["mentee", "junior"],
    "mentee": ["mentor", "senior"],
    "founder": ["investor", "advisor"],
    "investor": ["founder", "entrepreneur"],
    "technical": ["business", "product"],
    "business": ["technical", "engineering"],
}

_OFFSET_PATTERN = re.compile(r"^(?:UTC|GMT)?\s*([+-])(\d{1,2})(?::?(\d{2}))?$", re.IGNORECASE)


@dataclass(frozen=True)
class FeatureExtraction:
    """Feature vector plus the evidence behind it."""
    features: CompatibilityFeatures
    evidence: FeatureEvidence


def _normalize(values: Iterable[str]) -> List[str]:
    seen = []
    for value in values or []:
        item = str(value).strip().lower()
        if item and item not in seen:
            seen.append(item)
    return seen


def _shared(left: List[str], right: List[str]) -> List[str]:
    right_set = set(right)
    return [item for item in left if item in right_set]


def _overlap_ratio(left: List[str], right: List[str]) -> float:
    return len(_shared(left, right)) / max(min(len(left), len(right)), 1)


def interest_overlap(
    interests_a: List[str],
    interests_b: List[str],
    constraint_a: List[str],
    constraint_b: List[str],
) -> float:
    actual = _overlap_ratio(_normalize(interests_a), _normalize(interests_b))
    constraint = _overlap_ratio(_normalize(constraint_a), _normalize(constraint_b))
    return min(0.7 * actual + 0.3 * constraint, 1.0)


def experience_gap(level_a: Optional[str], level_b: Optional[str]) -> float:
    if not level_a or not level_b:
        return NEUTRAL

    rank_a = EXPERIENCE_LEVELS.get(level_a.lower(), UNKNOWN_EXPERIENCE_LEVEL)
    rank_b = EXPERIENCE_LEVELS.get(level_b.lower(), UNKNOWN_EXPERIENCE_LEVEL)
    gap = abs(rank_a - rank_b)

    if gap == 0:
        return 0.7
    if gap in (1, 2):
        return 1.0
    if gap == 3:
        return 0.6
    return 0.3


def industry_match(
    field_a: Optional[str],
    field_b: Optional[str],
    company_a: Optional[str] = None,
    company_b: Optional[str] = None,
) -> float:
    if not field_a or not field_b:
        return NEUTRAL

    field_a = field_a.lower()
    field_b = field_b.lower()
    if field_a == field_b:
        return 1.0

    for family in RELATED_FIELDS.values():
        if any(f in field_a for f in family) and any(f in field_b for f in family):
            return 0.8

    if company_a and company_b and company_a.lower() == company_b.lower():
        return 0.9

    return 0.3


def utc_offset_hours(zone: Optional[str], at_ms: Optional[int] = None) -> Optional[float]:
    """Resolve an IANA zone name or a numeric offset ("+02:00", "UTC-5") to hours.

    Returns None for unknown zones.
    """
    if not zone:
        return None

    match = _OFFSET_PATTERN.match(zone.strip())
    if match:
        sign, hours, minutes = match.groups()
        offset = int(hours) + int(minutes or 0) / 60
        return -offset if sign == "-" else offset

    try:
        tz = ZoneInfo(zone.strip())
    except (ZoneInfoNotFoundError, ValueError):
        return None

    if at_ms is None:
        moment = datetime.now(dt_timezone.utc)
    else:
        moment = datetime.fromtimestamp(at_ms / 1000, tz=dt_timezone.utc)
    return moment.astimezone(tz).utcoffset().total_seconds() / 3600


def timezone_compatibility(
    zone_a: Optional[str],
    zone_b: Optional[str],
    at_ms: Optional[int] = None,
) -> float:
    offset_a = utc_offset_hours(zone_a, at_ms)
    offset_b = utc_offset_hours(zone_b, at_ms)
    if offset_a is None or offset_b is None:
        return NEUTRAL

    diff = abs(offset_a - offset_b) % 24
    diff = min(diff, 24 - diff)
    return max(0.0, 1.0 - diff / 12)


def vector_similarity(a: Optional[Embedding], b: Optional[Embedding]) -> Optional[float]:
    """Cosine similarity mapped from [-1, 1] to [0, 1].

    None when either embedding is missing or the model tags differ. Vectors
    of different length, or a zero vector, score 0.
    """
    if a is None or b is None or a.model != b.model:
        return None
    if a.dim != b.dim:
        return 0.0

    va = a.vector.astype(np.float64)
    vb = b.vector.astype(np.float64)
    magnitude = np.linalg.norm(va) * np.linalg.norm(vb)
    if magnitude == 0:
        return 0.0

    cosine = float(np.dot(va, vb) / magnitude)
    return float(np.clip((cosine + 1) / 2, 0.0, 1.0))


def org_constraint_match(
    org_a,
    org_b,
    constraint_a: Optional[str],
    constraint_b: Optional[str],
) -> float:
    if not constraint_a and not constraint_b:
        return 1.0
    if constraint_a == constraint_b and not (org_a and org_b):
        return 1.0

    if org_a and org_b:
        if "same_org" in (constraint_a, constraint_b):
            if "different_org" in (constraint_a, constraint_b):
                return 0.0
            return 1.0 if org_a == org_b else 0.0
        if "different_org" in (constraint_a, constraint_b):
            return 1.0 if org_a != org_b else 0.0

    return NEUTRAL


def language_overlap(languages_a: List[str], languages_b: List[str]) -> float:
    left = _normalize(languages_a)
    right = _normalize(languages_b)
    if not left or not right:
        return NEUTRAL
    return len(_shared(left, right)) / max(len(left), len(right))


def complementary_pairs(roles_a: List[str], roles_b: List[str]) -> List[Tuple[str, str]]:
    pairs = []
    for role_a in _normalize(roles_a):
        for role_b in _normalize(roles_b):
            if role_b in COMPLEMENTARY_ROLES.get(role_a, []) or role_a in COMPLEMENTARY_ROLES.get(role_b, []):
                pairs.append((role_a, role_b))
    return pairs


def role_complementarity(roles_a: List[str], roles_b: List[str]) -> float:
    left = _normalize(roles_a)
    right = _normalize(roles_b)

    best = 0.0
    if complementary_pairs(left, right):
        best = 1.0
    elif _shared(left, right):
        best = 0.7
    return best


def _effective_roles(constraints: QueueConstraints, profile: UserScoringProfile) -> List[str]:
    # Constraint roles first; the profile role stands in when none were given
    if constraints.roles:
        return list(constraints.roles)
    return [profile.role] if profile.role else []


class FeatureExtractor:
    """Computes CompatibilityFeatures for a pair of users.

    Example:
        extraction = FeatureExtractor().extract(alice, bob, alice_constraints, bob_constraints)
        extraction.features.interest_overlap
    """

    def extract(
        self,
        a: UserScoringProfile,
        b: UserScoringProfile,
        constraints_a: QueueConstraints,
        constraints_b: QueueConstraints,
        at_ms: Optional[int] = None,
    ) -> FeatureExtraction:
        roles_a = _effective_roles(constraints_a, a)
        roles_b = _effective_roles(constraints_b, b)

        features = CompatibilityFeatures(
            interest_overlap=interest_overlap(
                a.interests, b.interests, constraints_a.interests, constraints_b.interests
            ),
            experience_gap=experience_gap(a.experience_level, b.experience_level),
            industry_match=industry_match(a.industry, b.industry, a.company, b.company),
            timezone_compatibility=timezone_compatibility(a.timezone, b.timezone, at_ms),
            vector_similarity=vector_similarity(a.embedding, b.embedding),
            org_constraint_match=org_constraint_match(
                a.org_id, b.org_id, constraints_a.org_constraint, constraints_b.org_constraint
            ),
            language_overlap=language_overlap(a.languages, b.languages),
            role_complementarity=role_complementarity(roles_a, roles_b),
        )

        evidence = FeatureEvidence(
            shared_interests=_shared(_normalize(a.interests), _normalize(b.interests)),
            shared_languages=_shared(_normalize(a.languages), _normalize(b.languages)),
            complementary_roles=[f"{x}/{y}" for x, y in complementary_pairs(roles_a, roles_b)],
            same_company=bool(a.company and b.company and a.company.lower() == b.company.lower()),
        )

        return FeatureExtraction(features=features, evidence=evidence)
