"""Compatibility scoring.

Combines a CompatibilityFeatures vector and a weight vector into a score in
[0, 1] plus a short human-readable explanation.

Formula:
    score = Σ(value × weight) / Σ(weight)

taken over the features present in both the feature vector and the weight
vector. A feature that could not be computed (vector_similarity without
embeddings) drops out of numerator and denominator instead of counting as 0.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .ports import CompatibilityFeatures, FeatureEvidence


@dataclass(frozen=True)
class ScoreBreakdown:
    """Score with per-feature contributions (value × weight) and explanation."""
    score: float
    contributions: Dict[str, float] = field(default_factory=dict)
    explanation: List[str] = field(default_factory=list)


def weighted_score(features: Mapping[str, float], weights: Mapping[str, float]) -> float:
    """Normalized weighted mean over the keys both mappings share."""
    total_score = 0.0
    total_weight = 0.0
    for name, value in features.items():
        weight = weights.get(name)
        if value is None or weight is None:
            continue
        total_score += value * weight
        total_weight += weight

    if total_weight <= 0:
        return 0.0
    return total_score / total_weight


class CompatibilityScorer:
    """Scores candidate pairs and explains the score.

    Args:
        max_reasons: Upper bound on explanation lines
    """

    def __init__(self, max_reasons: int = 3):
        self.max_reasons = max_reasons

    def score(
        self,
        features: CompatibilityFeatures,
        weights: Mapping[str, float],
        evidence: Optional[FeatureEvidence] = None,
    ) -> ScoreBreakdown:
        values = features.as_dict()
        shared = [name for name in values if name in weights]
        if not shared:
            return ScoreBreakdown(score=0.0)

        value = weighted_score({name: values[name] for name in shared}, weights)
        # Clamp guards float drift only; inputs are already in [0, 1]
        value = min(max(value, 0.0), 1.0)

        contributions = {name: values[name] * weights[name] for name in shared}
        return ScoreBreakdown(
            score=value,
            contributions=contributions,
            explanation=self.explain(values, contributions, evidence),
        )

    def explain(
        self,
        values: Mapping[str, float],
        contributions: Mapping[str, float],
        evidence: Optional[FeatureEvidence] = None,
    ) -> List[str]:
        """Top contributing features rendered as sentences, strongest first."""
        evidence = evidence or FeatureEvidence()
        ranked = sorted(
            (name for name, contribution in contributions.items() if contribution > 0),
            key=lambda name: (-contributions[name], name),
        )

        reasons = []
        for name in ranked:
            reason = _describe(name, values[name], evidence)
            if reason:
                reasons.append(reason)
            if len(reasons) >= self.max_reasons:
                break
        return reasons


def _describe(name: str, value: float, evidence: FeatureEvidence) -> Optional[str]:
    if name == "interest_overlap":
        if evidence.shared_interests:
            return "Shared interests: " + ", ".join(evidence.shared_interests)
        if value > 0.4:
            return "Some shared interests"
        return None
    if name == "experience_gap":
        if value == 1.0:
            return "Ideal experience gap for mentorship"
        if value >= 0.7:
            return "Similar experience levels"
        return None
    if name == "industry_match":
        if value == 1.0:
            return "Same professional field"
        if evidence.same_company and value >= 0.9:
            return "Work at the same company"
        if value >= 0.8:
            return "Related professional fields"
        return None
    if name == "timezone_compatibility":
        if value >= 0.75:
            return "Compatible time zones"
        return None
    if name == "vector_similarity":
        if value > 0.8:
            return "High semantic profile similarity"
        return None
    if name == "org_constraint_match":
        if value == 1.0:
            return "Organization preferences satisfied"
        return None
    if name == "language_overlap":
        if evidence.shared_languages:
            return "Common languages: " + ", ".join(evidence.shared_languages)
        return None
    if name == "role_complementarity":
        if evidence.complementary_roles:
            return "Complementary roles: " + ", ".join(evidence.complementary_roles)
        if value >= 0.7:
            return "Same networking role"
        return None
    return None
