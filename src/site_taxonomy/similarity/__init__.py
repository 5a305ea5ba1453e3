"""Pairwise similarity scoring for deduplication and clustering."""

from .blocking import blocking_keys, candidate_pairs
from .calculator import (
    SimilarityCache,
    SimilarityCalculator,
    SimilarityConfig,
    SimilarityResult,
    SimilarityThresholds,
    SimilarityWeights,
    similarity,
)

__all__ = [
    "SimilarityCache",
    "SimilarityCalculator",
    "SimilarityConfig",
    "SimilarityResult",
    "SimilarityThresholds",
    "SimilarityWeights",
    "blocking_keys",
    "candidate_pairs",
    "similarity",
]
