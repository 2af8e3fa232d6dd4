"""
Matching package for face identification.

Components:
    - interfaces: MatchMethod, MatchResult and the MatchStrategy base class
    - exact_matcher: hint id and exact signature-string rungs
    - embedding_matcher: cosine similarity over identity embeddings
    - geometric_matcher: fallback box / position / pose similarity
    - engine: MatchEngine, which runs the strategies in order

Usage:
    from faceid.matching import MatchEngine, MatchMethod
"""

from faceid.matching.interfaces import (
    MatchMethod,
    MatchResult,
    MatchStrategy,
    StrategyOutcome,
)
from faceid.matching.embedding_matcher import EmbeddingStrategy, cosine_similarity
from faceid.matching.geometric_matcher import GeometricStrategy, geometric_similarity
from faceid.matching.exact_matcher import ExactHintStrategy, ExactStringStrategy
from faceid.matching.engine import MatchEngine, default_strategies

__all__ = [
    # Data classes
    "MatchMethod",
    "MatchResult",
    "StrategyOutcome",
    # Strategy interface
    "MatchStrategy",
    # Strategies
    "ExactHintStrategy",
    "EmbeddingStrategy",
    "GeometricStrategy",
    "ExactStringStrategy",
    # Engine
    "MatchEngine",
    "default_strategies",
    # Similarity functions
    "cosine_similarity",
    "geometric_similarity",
]
