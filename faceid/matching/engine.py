"""
Match Engine

Ranks enrolled identities against the samples of one capture using an
ordered ladder of strategies, most reliable first:

    1. ExactHintStrategy     (externally supplied id)
    2. EmbeddingStrategy     (cosine similarity)
    3. GeometricStrategy     (box / position / pose similarity)
    4. ExactStringStrategy   (identical signature string)

The first strategy that accepts wins. If none accepts, the result has
method NONE and no matched id; the ranking of the most reliable strategy
that compared anything is kept for diagnostics. A failed identification is
a normal outcome, not an exception.

Usage:
    from faceid.matching import MatchEngine

    engine = MatchEngine(get_matching_config())
    result = engine.identify(samples, registry=registry.list_all())
    if result.is_match:
        print(result.matched_id, result.score, result.method)
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from faceid.matching.embedding_matcher import EmbeddingStrategy
from faceid.matching.exact_matcher import ExactHintStrategy, ExactStringStrategy
from faceid.matching.geometric_matcher import GeometricStrategy
from faceid.matching.interfaces import (
    MatchMethod,
    MatchResult,
    MatchStrategy,
    StrategyOutcome,
)
from faceid.samples import BiometricSample

module_logger = logging.getLogger(__name__)


def default_strategies(config: Optional[Dict[str, Any]] = None) -> List[MatchStrategy]:
    """The standard ladder built from the `matching` config section."""
    return [
        ExactHintStrategy(),
        EmbeddingStrategy(config),
        GeometricStrategy(config),
        ExactStringStrategy(),
    ]


class MatchEngine:
    """
    Multi-modal identity matcher.

    Args:
        config: Dictionary (the `matching` config section). See
                EmbeddingStrategy and GeometricStrategy for keys; `top_k`
                bounds the diagnostic ranking.
        strategies: Custom ladder; defaults to default_strategies(config).
        logger: Optional logger for match diagnostics.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        strategies: Optional[Sequence[MatchStrategy]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if config is None:
            config = {}
        self.config = config
        self.top_k = config.get("top_k", 5)
        self.strategies = list(strategies) if strategies is not None else default_strategies(config)
        self.logger = logger or module_logger

    def identify(
        self,
        query_samples: Sequence[BiometricSample],
        hint_id: Optional[str] = None,
        registry: Sequence = (),
    ) -> MatchResult:
        """
        Identify the person behind `query_samples`.

        Args:
            query_samples: Samples from one finalized capture session.
            hint_id: Optional identity id supplied alongside the scan.
            registry: Enrolled identities, in registry order.

        Returns:
            MatchResult; method NONE with matched_id None when nothing is accepted.
        """
        registry = list(registry)
        query_samples = list(query_samples)
        evaluated: List[str] = []
        diagnostics: Optional[StrategyOutcome] = None

        for strategy in self.strategies:
            outcome = strategy.evaluate(query_samples, registry, hint_id)
            if outcome is None:
                continue
            evaluated.append(outcome.method.value)

            if outcome.accepted:
                self.logger.info(
                    f"Identified {outcome.matched_id} via {outcome.method.value} "
                    f"(score={outcome.score:.3f})"
                )
                return MatchResult(
                    matched_id=outcome.matched_id,
                    score=_clip(outcome.score),
                    method=outcome.method,
                    ranked_candidates=self._top(outcome),
                    details={**outcome.details, "evaluated": evaluated},
                )

            if diagnostics is None and outcome.ranked:
                diagnostics = outcome

        details: Dict[str, Any] = {
            "evaluated": evaluated,
            "registry_size": len(registry),
            "query_samples": len(query_samples),
        }
        ranked = []
        if diagnostics is not None:
            ranked = self._top(diagnostics)
            details["diagnostic_method"] = diagnostics.method.value
            details["best_score"] = diagnostics.score
            details.update(diagnostics.details)

        self.logger.info(
            f"No identity accepted among {len(registry)} enrolled "
            f"(evaluated: {', '.join(evaluated) or 'nothing'})"
        )
        return MatchResult(
            matched_id=None,
            score=0.0,
            method=MatchMethod.NONE,
            ranked_candidates=ranked,
            details=details,
        )

    def _top(self, outcome: StrategyOutcome):
        return [(identity_id, _clip(score)) for identity_id, score in outcome.ranked[: self.top_k]]


def _clip(score: float) -> float:
    return max(0.0, min(1.0, float(score)))
