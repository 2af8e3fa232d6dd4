"""
Geometric Matcher: fallback comparison of face signatures.

Used when the embedding model is unavailable. A signature only encodes the
face box and head pose, so the score is a weighted blend of three
sub-similarities, each saturating with a hand-tuned scale:

    size     = 0.6 * (min_area / max_area) ** 0.5
             + 0.4 * (1 - min(|d aspect| / 0.3, 1))
    position = 0.4 * (1 - min(|d left| / 500, 1)) ** 0.7
             + 0.6 * (1 - min(|d top| / 300, 1)) ** 0.7
    angle    = 0.7 * (1 - min(|d yaw| / 120, 1)) ** 0.6
             + 0.3 * (1 - min(|d pitch| / 100, 1)) ** 0.6

    composite = 0.4 * size + 0.35 * position + 0.25 * angle
"""

import logging
from typing import Any, Dict, List, Optional

from faceid.matching.interfaces import (
    MatchMethod,
    MatchStrategy,
    StrategyOutcome,
    rank_scores,
)
from faceid.samples import GeometricSignature, Modality

logger = logging.getLogger(__name__)

# Composite weights
SIZE_WEIGHT = 0.4
POSITION_WEIGHT = 0.35
ANGLE_WEIGHT = 0.25

# Saturation scales
ASPECT_SCALE = 0.3
LEFT_SCALE = 500.0
TOP_SCALE = 300.0
YAW_SCALE = 120.0
PITCH_SCALE = 100.0


def _closeness(delta: float, scale: float) -> float:
    return 1.0 - min(abs(delta) / scale, 1.0)


def size_similarity(a: GeometricSignature, b: GeometricSignature) -> float:
    area_ratio = min(a.area, b.area) / max(a.area, b.area)
    aspect = _closeness(a.aspect_ratio - b.aspect_ratio, ASPECT_SCALE)
    return 0.6 * area_ratio ** 0.5 + 0.4 * aspect


def position_similarity(a: GeometricSignature, b: GeometricSignature) -> float:
    return (
        0.4 * _closeness(a.left - b.left, LEFT_SCALE) ** 0.7
        + 0.6 * _closeness(a.top - b.top, TOP_SCALE) ** 0.7
    )


def angle_similarity(a: GeometricSignature, b: GeometricSignature) -> float:
    return (
        0.7 * _closeness(a.yaw - b.yaw, YAW_SCALE) ** 0.6
        + 0.3 * _closeness(a.pitch - b.pitch, PITCH_SCALE) ** 0.6
    )


def geometric_similarity(a: GeometricSignature, b: GeometricSignature) -> float:
    """Composite similarity in [0, 1]; 1.0 for identical box and pose."""
    composite = (
        SIZE_WEIGHT * size_similarity(a, b)
        + POSITION_WEIGHT * position_similarity(a, b)
        + ANGLE_WEIGHT * angle_similarity(a, b)
    )
    return max(0.0, min(1.0, composite))


class GeometricStrategy(MatchStrategy):
    """
    Max-pair geometric matching over signature samples.

    Args:
        config: Dictionary (the `matching` config section) with keys:
            - geometric_threshold: Acceptance threshold (default 0.65)
            - top_k: Length of the diagnostic ranking (default 5)
    """

    method = MatchMethod.GEOMETRIC

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if config is None:
            config = {}
        self.threshold = config.get("geometric_threshold", 0.65)
        self.top_k = config.get("top_k", 5)

    def evaluate(self, query_samples, registry, hint_id=None) -> Optional[StrategyOutcome]:
        queries: List[GeometricSignature] = [
            s.signature for s in query_samples if s.modality == Modality.GEOMETRIC
        ]
        if not queries:
            return None

        scores: Dict[str, float] = {}
        malformed = 0
        for identity in registry:
            best = None
            for stored in identity.geometric_samples:
                enrolled = GeometricSignature.try_parse(stored)
                if enrolled is None:
                    malformed += 1
                    continue
                for query in queries:
                    sim = geometric_similarity(query, enrolled)
                    if best is None or sim > best:
                        best = sim
            if best is not None:
                scores[identity.identity_id] = best

        details = {"threshold": self.threshold, "malformed_signatures": malformed}
        if not scores:
            return StrategyOutcome(method=self.method, accepted=False, details=details)

        ranked = rank_scores(scores, self.top_k)
        best_id, best_score = ranked[0]
        accepted = best_score >= self.threshold
        logger.debug(
            f"Geometric best={best_id} score={best_score:.3f} "
            f"threshold={self.threshold:.2f} accepted={accepted}"
        )

        return StrategyOutcome(
            method=self.method,
            accepted=accepted,
            matched_id=best_id if accepted else None,
            score=best_score,
            ranked=ranked,
            details=details,
        )
