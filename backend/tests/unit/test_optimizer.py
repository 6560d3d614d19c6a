"""Unit tests for correlation-based weight optimization.

Tests cover:
- Pearson correlation edge cases
- Weight derivation (floor clamp, normalization)
- Minimum sample enforcement
- Proposal persistence without touching production weights
"""

import math
from uuid import uuid4

import pytest

from linkup.learning.optimizer import OptimizationService, WeightOptimizer, pearson_correlation
from linkup.learning.weights import DEFAULT_VERSION, DEFAULT_WEIGHTS, WeightRegistry
from linkup.matching.errors import InsufficientDataError
from linkup.models import MatchingAnalytics, WeightVersion

NOW = 1_700_000_000_000


def analytics_row(outcome, interest, experience=0.5, index=0):
    return MatchingAnalytics(
        match_id=f"match_{index}",
        user_id=uuid4(),
        outcome=outcome,
        score=0.7,
        features={
            "interest_overlap": interest,
            "experience_gap": experience,
            "industry_match": 0.5,
            "timezone_compatibility": 0.5,
            "org_constraint_match": 1.0,
            "language_overlap": 0.5,
            "role_complementarity": 0.0,
        },
        weights=dict(DEFAULT_WEIGHTS),
        weights_version=0,
        created_at=NOW + index,
        updated_at=NOW + index,
    )


def separable_batch(n=120):
    """Completed matches have high interest overlap and low experience fit."""
    rows = []
    for i in range(n):
        completed = i % 2 == 0
        rows.append(
            analytics_row(
                "completed" if completed else "declined",
                interest=0.9 if completed else 0.2,
                experience=0.3 if completed else 0.8,
                index=i,
            )
        )
    return rows


class TestPearsonCorrelation:
    """Test pearson_correlation"""

    def test_perfect_correlation(self):
        assert pearson_correlation([0.1, 0.5, 0.9], [0, 0.5, 1]) == pytest.approx(1.0)

    def test_constant_input_is_zero(self):
        assert pearson_correlation([0.5, 0.5, 0.5], [0, 1, 0]) == 0.0
        assert pearson_correlation([0.1, 0.5, 0.9], [1, 1, 1]) == 0.0

    def test_too_few_points(self):
        assert pearson_correlation([0.5], [1]) == 0.0
        assert pearson_correlation([], []) == 0.0


class TestWeightOptimizer:
    """Test WeightOptimizer.optimize"""

    def test_positive_correlation_dominates(self):
        result = WeightOptimizer(floor=0.01).optimize(separable_batch(), DEFAULT_WEIGHTS, min_samples=100)

        weights = result.weights.as_dict()
        assert result.correlations["interest_overlap"] == pytest.approx(1.0)
        assert weights["interest_overlap"] == pytest.approx(1.0 - 7 * 0.01)
        assert sum(weights.values()) == pytest.approx(1.0)

    def test_negative_correlation_clamped_to_floor(self):
        result = WeightOptimizer(floor=0.01).optimize(separable_batch(), DEFAULT_WEIGHTS, min_samples=100)

        assert result.correlations["experience_gap"] == pytest.approx(-1.0)
        assert result.weights["experience_gap"] == pytest.approx(0.01)

    def test_missing_feature_gets_floor(self):
        result = WeightOptimizer(floor=0.01).optimize(separable_batch(), DEFAULT_WEIGHTS, min_samples=100)

        assert result.correlations["vector_similarity"] == 0.0
        assert result.weights["vector_similarity"] == pytest.approx(0.01)

    def test_constant_feature_gets_floor(self):
        result = WeightOptimizer(floor=0.01).optimize(separable_batch(), DEFAULT_WEIGHTS, min_samples=100)

        for name in ("industry_match", "timezone_compatibility", "org_constraint_match", "role_complementarity"):
            assert not math.isnan(result.correlations[name])
            assert result.correlations[name] == 0.0
            assert result.weights[name] == pytest.approx(0.01)

    def test_improvement_is_accuracy_difference(self):
        result = WeightOptimizer().optimize(separable_batch(), DEFAULT_WEIGHTS, min_samples=100)

        assert result.improvement == pytest.approx(result.proposed_accuracy - result.current_accuracy)
        assert result.proposed_accuracy == pytest.approx(1.0)

    def test_insufficient_samples(self):
        with pytest.raises(InsufficientDataError) as exc:
            WeightOptimizer().optimize(separable_batch(10), DEFAULT_WEIGHTS, min_samples=100)

        assert exc.value.sample_size == 10
        assert exc.value.min_samples == 100

    def test_unresolved_rows_are_ignored(self):
        batch = separable_batch(100) + [analytics_row("accepted", 0.9, index=500 + i) for i in range(50)]

        result = WeightOptimizer().optimize(batch, DEFAULT_WEIGHTS, min_samples=100)

        assert result.sample_size == 100


class TestOptimizationService:
    """Test proposal storage"""

    def test_propose_stores_version_without_promoting(self, db_session):
        db_session.add_all(separable_batch())
        db_session.commit()

        report = OptimizationService(db_session).propose(min_samples=100, actor="admin")

        assert report["status"] == "proposed"
        assert report["version"] == 1
        assert report["current_version"] == DEFAULT_VERSION
        assert WeightRegistry(db_session).current() == (DEFAULT_VERSION, DEFAULT_WEIGHTS)
        assert db_session.query(WeightVersion).one().status == "proposed"

    def test_propose_raises_on_insufficient_data(self, db_session):
        db_session.add_all(separable_batch(20))
        db_session.commit()

        with pytest.raises(InsufficientDataError):
            OptimizationService(db_session).propose(min_samples=100)

        assert db_session.query(WeightVersion).count() == 0

    def test_run_reports_insufficient_data(self, db_session):
        result = OptimizationService(db_session).run(min_samples=100)

        assert result == {"status": "insufficient_data", "sample_size": 0, "min_samples": 100}

    def test_batch_capped_at_max_samples(self, db_session):
        db_session.add_all(separable_batch(120))
        db_session.commit()

        report = OptimizationService(db_session, max_samples=110).propose(min_samples=100)

        assert report["sample_size"] == 110

    def test_proposal_with_custom_floor_can_be_promoted(self, db_session):
        db_session.add_all(separable_batch())
        db_session.commit()

        report = OptimizationService(db_session, floor=0.005).propose(min_samples=100)
        registry = WeightRegistry(db_session, floor=0.005)
        registry.promote(report["version"])

        version, weights = registry.current()
        assert version == report["version"]
        assert weights["experience_gap"] == pytest.approx(0.005)
