"""
Unit Tests for the Matching Ladder

This module tests:
- Cosine similarity
- Embedding strategy thresholds and centroid option
- Geometric similarity formula
- Exact hint / exact string strategies
- MatchEngine ordering, ties and diagnostics

Usage:
    pytest tests/test_matching.py -v
"""

import math
import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from faceid.errors import EmbeddingDimensionMismatch
from faceid.matching import (
    EmbeddingStrategy,
    GeometricStrategy,
    MatchEngine,
    MatchMethod,
    MatchResult,
    cosine_similarity,
    geometric_similarity,
)
from faceid.matching.exact_matcher import ExactHintStrategy, ExactStringStrategy
from faceid.pose import PoseAngle
from faceid.registry import EnrolledIdentity
from faceid.samples import BiometricSample, GeometricSignature


def unit_with_dot(dot):
    """Unit vector whose dot product with e1 is `dot`."""
    return np.array([dot, math.sqrt(1.0 - dot * dot), 0.0], dtype=np.float32)


def embedding_query(*vectors, angles=None):
    angles = angles or [PoseAngle.FRONT] * len(vectors)
    return [BiometricSample.from_embedding(a, v) for a, v in zip(angles, vectors)]


def signature(left=100, top=200, width=150, height=180, yaw=2, pitch=1, ts=1700000000000):
    return GeometricSignature(left, top, width, height, yaw, pitch, ts)


def geometric_query(*signatures):
    return [BiometricSample.from_signature(PoseAngle.FRONT, s) for s in signatures]


E1 = np.array([1.0, 0.0, 0.0], dtype=np.float32)


# ============================================================
# Test Cosine Similarity
# ============================================================

class TestCosineSimilarity:
    """Tests for cosine_similarity."""

    def test_identical_vectors(self):
        v = np.random.randn(512).astype(np.float32)
        assert cosine_similarity(v, v) == pytest.approx(1.0, abs=1e-5)

    def test_symmetric(self):
        a = np.random.randn(128)
        b = np.random.randn(128)
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))

    def test_opposite_vectors(self):
        assert cosine_similarity(E1, -E1) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)

    def test_zero_vector(self):
        assert cosine_similarity([0, 0, 0], E1) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(EmbeddingDimensionMismatch) as exc_info:
            cosine_similarity(np.ones(512), np.ones(128))
        assert exc_info.value.probe_dim == 512
        assert exc_info.value.template_dim == 128
        assert isinstance(exc_info.value, ValueError)

    def test_result_in_range(self):
        for _ in range(20):
            a = np.random.randn(64)
            b = np.random.randn(64)
            assert -1.0 <= cosine_similarity(a, b) <= 1.0


# ============================================================
# Test Embedding Strategy
# ============================================================

class TestEmbeddingStrategy:
    """Tests for EmbeddingStrategy."""

    @pytest.fixture
    def registry(self):
        return [
            EnrolledIdentity("A", embedding_samples=[unit_with_dot(0.55)]),
            EnrolledIdentity("B", embedding_samples=[unit_with_dot(0.72)]),
        ]

    def test_best_candidate_accepted(self, registry):
        outcome = EmbeddingStrategy({"single_angle_threshold": 0.70}).evaluate(
            embedding_query(E1), registry
        )
        assert outcome.accepted
        assert outcome.matched_id == "B"
        assert outcome.score == pytest.approx(0.72, abs=1e-5)
        assert [i for i, _ in outcome.ranked] == ["B", "A"]

    def test_lower_threshold_still_picks_max(self, registry):
        outcome = EmbeddingStrategy({"single_angle_threshold": 0.50}).evaluate(
            embedding_query(E1), registry
        )
        assert outcome.matched_id == "B"

    def test_below_threshold_rejected(self, registry):
        outcome = EmbeddingStrategy({"single_angle_threshold": 0.80}).evaluate(
            embedding_query(E1), registry
        )
        assert not outcome.accepted
        assert outcome.matched_id is None
        assert outcome.score == pytest.approx(0.72, abs=1e-5)

    def test_raising_threshold_never_adds_matches(self, registry):
        accepted = [
            EmbeddingStrategy({"single_angle_threshold": t}).evaluate(
                embedding_query(E1), registry
            ).accepted
            for t in (0.5, 0.6, 0.7, 0.8, 0.9)
        ]
        # once rejected, stays rejected
        assert accepted == sorted(accepted, reverse=True)

    def test_multi_angle_threshold(self):
        strategy = EmbeddingStrategy()
        assert strategy.threshold_for(1) == 0.70
        assert strategy.threshold_for(3) == 0.65

        registry = [EnrolledIdentity("A", embedding_samples=[unit_with_dot(0.67)])]
        single = strategy.evaluate(embedding_query(E1), registry)
        multi = strategy.evaluate(
            embedding_query(E1, unit_with_dot(0.1), angles=[PoseAngle.FRONT, PoseAngle.LEFT]),
            registry,
        )
        assert not single.accepted
        assert multi.accepted
        assert multi.details["query_angles"] == 2

    def test_best_pair_across_samples(self):
        registry = [EnrolledIdentity("A", embedding_samples=[unit_with_dot(0.1), unit_with_dot(0.9)])]
        outcome = EmbeddingStrategy().evaluate(embedding_query(E1), registry)
        assert outcome.score == pytest.approx(0.9, abs=1e-5)

    def test_centroid_option(self):
        e2 = np.array([0.0, 1.0, 0.0], dtype=np.float32)
        query = embedding_query(E1, e2, angles=[PoseAngle.FRONT, PoseAngle.LEFT])
        registry = [EnrolledIdentity("A", embedding_samples=[E1])]

        max_pair = EmbeddingStrategy().evaluate(query, registry)
        centroid = EmbeddingStrategy({"use_centroid": True}).evaluate(query, registry)

        assert max_pair.score == pytest.approx(1.0, abs=1e-5)
        assert centroid.score == pytest.approx(1 / math.sqrt(2), abs=1e-5)
        assert centroid.details["centroid"] is True

    def test_dimension_mismatch_skipped(self):
        registry = [
            EnrolledIdentity("short", embedding_samples=[np.ones(2)]),
            EnrolledIdentity("A", embedding_samples=[E1]),
        ]
        outcome = EmbeddingStrategy().evaluate(embedding_query(E1), registry)
        assert outcome.matched_id == "A"
        assert outcome.details["skipped_pairs"] == 1
        assert [i for i, _ in outcome.ranked] == ["A"]

    def test_negative_cosine_scores_zero(self):
        registry = [EnrolledIdentity("A", embedding_samples=[-E1])]
        outcome = EmbeddingStrategy().evaluate(embedding_query(E1), registry)
        assert outcome.score == 0.0

    def test_no_embedding_queries(self, registry):
        assert EmbeddingStrategy().evaluate(geometric_query(signature()), registry) is None


# ============================================================
# Test Geometric Similarity
# ============================================================

class TestGeometricSimilarity:
    """Tests for the geometric composite score."""

    def test_identical_signatures(self):
        assert geometric_similarity(signature(), signature()) == pytest.approx(1.0)

    def test_close_signatures(self):
        query = signature(100, 200, 150, 180, 2, 1)
        enrolled = signature(105, 205, 148, 182, 3, 0)
        score = geometric_similarity(query, enrolled)
        assert score == pytest.approx(0.984, abs=0.002)

    def test_symmetric(self):
        a = signature(100, 200, 150, 180, 2, 1)
        b = signature(300, 50, 90, 140, -30, 15)
        assert geometric_similarity(a, b) == pytest.approx(geometric_similarity(b, a))

    def test_far_signatures_score_low(self):
        a = signature(0, 0, 50, 50, -60, -50)
        b = signature(600, 400, 300, 200, 60, 50)
        assert geometric_similarity(a, b) < 0.3

    def test_strategy_selects_close_identity(self):
        registry = [
            EnrolledIdentity("far", geometric_samples=[signature(400, 10, 60, 60, -40, 20).to_string()]),
            EnrolledIdentity("near", geometric_samples=[signature(105, 205, 148, 182, 3, 0).to_string()]),
        ]
        outcome = GeometricStrategy({"geometric_threshold": 0.60}).evaluate(
            geometric_query(signature()), registry
        )
        assert outcome.accepted
        assert outcome.matched_id == "near"
        assert outcome.score > 0.60

    def test_malformed_signatures_skipped(self):
        registry = [
            EnrolledIdentity("A", geometric_samples=["face_garbage", signature().to_string()]),
        ]
        outcome = GeometricStrategy().evaluate(geometric_query(signature()), registry)
        assert outcome.matched_id == "A"
        assert outcome.details["malformed_signatures"] == 1


# ============================================================
# Test Exact Strategies
# ============================================================

class TestExactStrategies:
    """Tests for the hint and exact-string rungs."""

    def test_hint_absent(self):
        assert ExactHintStrategy().evaluate([], [EnrolledIdentity("A")]) is None

    def test_hint_found(self):
        outcome = ExactHintStrategy().evaluate([], [EnrolledIdentity("A")], hint_id="A")
        assert outcome.accepted
        assert outcome.score == 1.0

    def test_hint_not_found(self):
        outcome = ExactHintStrategy().evaluate([], [EnrolledIdentity("A")], hint_id="Z")
        assert not outcome.accepted
        assert outcome.details["hint_not_found"] == "Z"

    def test_exact_string(self):
        stored = signature().to_string()
        registry = [EnrolledIdentity("A", geometric_samples=[stored])]
        outcome = ExactStringStrategy().evaluate(geometric_query(signature()), registry)
        assert outcome.accepted
        assert outcome.details["signature"] == stored

    def test_exact_string_differs_by_timestamp(self):
        registry = [EnrolledIdentity("A", geometric_samples=[signature(ts=1).to_string()])]
        outcome = ExactStringStrategy().evaluate(geometric_query(signature(ts=2)), registry)
        assert not outcome.accepted


# ============================================================
# Test MatchEngine
# ============================================================

class TestMatchEngine:
    """Tests for the full ladder."""

    def test_empty_registry(self):
        result = MatchEngine().identify(embedding_query(E1), registry=[])
        assert isinstance(result, MatchResult)
        assert not result.is_match
        assert result.method == MatchMethod.NONE
        assert result.score == 0.0
        assert result.ranked_candidates == []

    def test_no_samples(self):
        result = MatchEngine().identify([], registry=[EnrolledIdentity("A", embedding_samples=[E1])])
        assert result.method == MatchMethod.NONE
        assert result.details["evaluated"] == []

    def test_hint_wins(self):
        registry = [
            EnrolledIdentity("A", embedding_samples=[E1]),
            EnrolledIdentity("B", embedding_samples=[unit_with_dot(0.1)]),
        ]
        result = MatchEngine().identify(embedding_query(E1), hint_id="B", registry=registry)
        assert result.matched_id == "B"
        assert result.method == MatchMethod.EXACT_HINT
        assert result.score == 1.0

    def test_unknown_hint_falls_back(self):
        registry = [EnrolledIdentity("A", embedding_samples=[E1])]
        result = MatchEngine().identify(embedding_query(E1), hint_id="Z", registry=registry)
        assert result.matched_id == "A"
        assert result.method == MatchMethod.EMBEDDING
        assert result.details["evaluated"] == ["exact_hint", "embedding"]

    def test_embedding_example(self):
        registry = [
            EnrolledIdentity("A", embedding_samples=[unit_with_dot(0.55)]),
            EnrolledIdentity("B", embedding_samples=[unit_with_dot(0.72)]),
        ]
        for threshold in (0.70, 0.50):
            engine = MatchEngine({"single_angle_threshold": threshold})
            result = engine.identify(embedding_query(E1), registry=registry)
            assert result.matched_id == "B"
            assert result.method == MatchMethod.EMBEDDING

    def test_tie_keeps_registry_order(self):
        registry = [
            EnrolledIdentity("first", embedding_samples=[E1]),
            EnrolledIdentity("second", embedding_samples=[E1]),
        ]
        result = MatchEngine().identify(embedding_query(E1), registry=registry)
        assert result.matched_id == "first"
        assert [i for i, _ in result.ranked_candidates] == ["first", "second"]

    def test_geometric_fallback(self):
        registry = [
            EnrolledIdentity("near", geometric_samples=[signature(105, 205, 148, 182, 3, 0).to_string()]),
        ]
        result = MatchEngine({"geometric_threshold": 0.60}).identify(
            geometric_query(signature()), registry=registry
        )
        assert result.method == MatchMethod.GEOMETRIC
        assert result.matched_id == "near"
        assert 0.60 < result.score <= 1.0

    def test_exact_string_after_geometric(self):
        stored = signature().to_string()
        registry = [EnrolledIdentity("A", geometric_samples=[stored])]
        # a threshold above 1.0 makes the geometric rung reject everything
        result = MatchEngine({"geometric_threshold": 1.01}).identify(
            geometric_query(signature()), registry=registry
        )
        assert result.method == MatchMethod.EXACT_STRING
        assert result.matched_id == "A"
        assert result.details["evaluated"] == ["geometric", "exact_string"]

    def test_rejection_keeps_diagnostics(self):
        registry = [
            EnrolledIdentity("A", embedding_samples=[unit_with_dot(0.3)]),
            EnrolledIdentity("B", embedding_samples=[unit_with_dot(0.5)]),
        ]
        result = MatchEngine().identify(embedding_query(E1), registry=registry)

        assert not result.is_match
        assert result.score == 0.0
        assert result.details["diagnostic_method"] == "embedding"
        assert result.details["best_score"] == pytest.approx(0.5, abs=1e-5)
        assert result.details["registry_size"] == 2
        assert [i for i, _ in result.ranked_candidates] == ["B", "A"]

    def test_top_k_bounds_ranking(self):
        registry = [
            EnrolledIdentity(f"id{i}", embedding_samples=[unit_with_dot(0.1 + 0.05 * i)])
            for i in range(10)
        ]
        result = MatchEngine({"top_k": 3}).identify(embedding_query(E1), registry=registry)
        assert len(result.ranked_candidates) == 3
        assert result.ranked_candidates[0][0] == "id9"

    def test_scores_in_unit_range(self):
        registry = [EnrolledIdentity("A", embedding_samples=[-E1])]
        result = MatchEngine().identify(embedding_query(E1), registry=registry)
        assert all(0.0 <= s <= 1.0 for _, s in result.ranked_candidates)

    def test_custom_strategies(self):
        registry = [EnrolledIdentity("A", embedding_samples=[E1])]
        engine = MatchEngine(strategies=[ExactHintStrategy()])
        result = engine.identify(embedding_query(E1), registry=registry)
        assert result.method == MatchMethod.NONE
