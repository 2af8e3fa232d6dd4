"""
Embedding Matcher: compare identity embeddings via cosine similarity.

For every query embedding and every enrolled embedding of every identity
the cosine similarity is computed; each identity keeps its best pair. The
identity with the global maximum is accepted when it clears the threshold,
which is lower when the query spans several angles (more evidence).

Vectors are expected to be L2-normalized already, so the cosine reduces to
a dot product. cosine_similarity still divides by the norms because vectors
read back from storage strings lose a little precision.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from faceid.errors import EmbeddingDimensionMismatch
from faceid.matching.interfaces import (
    MatchMethod,
    MatchStrategy,
    StrategyOutcome,
    rank_scores,
)
from faceid.samples import BiometricSample, Modality, l2_normalize

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors, clamped to [-1, 1].

    Returns 0.0 if either vector has zero norm.

    Raises:
        EmbeddingDimensionMismatch: If the vectors differ in length.
    """
    a = np.asarray(a, dtype=np.float32).ravel()
    b = np.asarray(b, dtype=np.float32).ravel()

    if a.shape[0] != b.shape[0]:
        raise EmbeddingDimensionMismatch(a.shape[0], b.shape[0])

    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a < 1e-8 or norm_b < 1e-8:
        return 0.0

    cosine = float(np.dot(a, b)) / (norm_a * norm_b)
    return max(-1.0, min(1.0, cosine))


class EmbeddingStrategy(MatchStrategy):
    """
    Max-pair cosine matching over embedding samples.

    Args:
        config: Dictionary (the `matching` config section) with keys:
            - single_angle_threshold: Acceptance for a one-angle query (default 0.70)
            - multi_angle_threshold: Acceptance for a multi-angle query (default 0.65)
            - use_centroid: Average query vectors into one before comparing (default False)
            - top_k: Length of the diagnostic ranking (default 5)
    """

    method = MatchMethod.EMBEDDING

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if config is None:
            config = {}
        self.single_angle_threshold = config.get("single_angle_threshold", 0.70)
        self.multi_angle_threshold = config.get("multi_angle_threshold", 0.65)
        self.use_centroid = config.get("use_centroid", False)
        self.top_k = config.get("top_k", 5)

    def threshold_for(self, n_angles: int) -> float:
        return self.single_angle_threshold if n_angles <= 1 else self.multi_angle_threshold

    def evaluate(self, query_samples, registry, hint_id=None) -> Optional[StrategyOutcome]:
        queries = [s for s in query_samples if s.modality == Modality.EMBEDDING]
        if not queries:
            return None

        n_angles = len({s.angle for s in queries})
        threshold = self.threshold_for(n_angles)
        vectors = self._query_vectors(queries)

        scores: Dict[str, float] = {}
        skipped_pairs = 0
        for identity in registry:
            best = None
            for enrolled in identity.embedding_samples:
                for query in vectors:
                    try:
                        sim = cosine_similarity(query, enrolled)
                    except EmbeddingDimensionMismatch as e:
                        logger.debug(f"Skipping pair for {identity.identity_id}: {e}")
                        skipped_pairs += 1
                        continue
                    if best is None or sim > best:
                        best = sim
            if best is not None:
                scores[identity.identity_id] = max(0.0, best)

        details = {
            "threshold": threshold,
            "query_angles": n_angles,
            "query_vectors": len(vectors),
            "centroid": len(vectors) == 1 and len(queries) > 1,
            "skipped_pairs": skipped_pairs,
        }
        if not scores:
            return StrategyOutcome(method=self.method, accepted=False, details=details)

        ranked = rank_scores(scores, self.top_k)
        best_id, best_score = ranked[0]
        accepted = best_score >= threshold
        logger.debug(
            f"Embedding best={best_id} score={best_score:.3f} "
            f"threshold={threshold:.2f} accepted={accepted}"
        )

        return StrategyOutcome(
            method=self.method,
            accepted=accepted,
            matched_id=best_id if accepted else None,
            score=best_score,
            ranked=ranked,
            details=details,
        )

    def _query_vectors(self, queries: List[BiometricSample]) -> List[np.ndarray]:
        vectors = [s.vector for s in queries]
        if not self.use_centroid or len(vectors) < 2:
            return vectors

        dims = {v.shape[0] for v in vectors}
        if len(dims) != 1:
            logger.warning("Query embeddings differ in dimension; comparing individually")
            return vectors

        centroid = l2_normalize(np.mean(np.stack(vectors), axis=0))
        if centroid is None:
            # Opposing vectors cancel out
            return vectors
        return [centroid]
