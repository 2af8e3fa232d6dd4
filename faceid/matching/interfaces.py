"""
Matching Interfaces Module

Shared types for the identity matching ladder.

The MatchEngine holds an ordered list of MatchStrategy objects, from most
to least reliable. Each strategy either accepts a match (returns a
StrategyOutcome with accepted=True) or reports what it evaluated so the
engine can keep a diagnostic ranking and move on to the next strategy.

Usage:
    from faceid.matching.interfaces import MatchMethod, MatchResult, MatchStrategy
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple

from faceid.samples import BiometricSample

if TYPE_CHECKING:
    from faceid.registry import EnrolledIdentity


class MatchMethod(str, Enum):
    """Which rung of the ladder produced the result."""

    EXACT_HINT = "exact_hint"
    EMBEDDING = "embedding"
    GEOMETRIC = "geometric"
    EXACT_STRING = "exact_string"
    NONE = "none"


# (identity_id, score), best first
RankedCandidates = List[Tuple[str, float]]


@dataclass
class MatchResult:
    """
    Result of an identification.

    Attributes:
        matched_id: Identity that was accepted, or None.
        score: Similarity in [0, 1]. 1.0 for the exact methods.
        method: Strategy that produced the decision (NONE on failure).
        ranked_candidates: Top-K (identity_id, score) pairs for diagnostics.
        details: Strategy-specific values, useful for debugging thresholds.
    """

    matched_id: Optional[str]
    score: float
    method: MatchMethod
    ranked_candidates: RankedCandidates = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_match(self) -> bool:
        return self.matched_id is not None


@dataclass
class StrategyOutcome:
    """
    What one strategy found.

    accepted is True only when the best candidate cleared the strategy's
    threshold. ranked is filled whenever the strategy had something to compare.
    """

    method: MatchMethod
    accepted: bool
    matched_id: Optional[str] = None
    score: float = 0.0
    ranked: RankedCandidates = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)


class MatchStrategy(ABC):
    """One rung of the matching ladder."""

    method: MatchMethod

    @abstractmethod
    def evaluate(
        self,
        query_samples: Sequence[BiometricSample],
        registry: Sequence["EnrolledIdentity"],
        hint_id: Optional[str] = None,
    ) -> Optional[StrategyOutcome]:
        """
        Compare the query against the registry.

        Returns:
            None when the strategy has nothing to evaluate (e.g. no samples
            of its modality); otherwise a StrategyOutcome.
        """


def rank_scores(scores: Dict[str, float], top_k: int) -> RankedCandidates:
    """
    Sort per-identity scores best first.

    Python's sort is stable and `scores` preserves registry insertion order,
    so exact ties keep the first-registered identity in front.
    """
    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    return ranked[:top_k] if top_k > 0 else ranked
