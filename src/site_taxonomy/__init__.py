"""Site taxonomy core.

Turns a flat URL catalog into a category tree, analyses the tree for
relationships and similarity, and runs the work as a staged batch pipeline.
"""

from .analysis import HierarchyAnalyzer, Relationship, RelationshipType
from .hierarchy import HierarchyBuilder, HierarchyResult, Node, RawNode
from .pipeline import ProcessingQueue
from .similarity import SimilarityCalculator, SimilarityResult

__version__ = "0.1.0"

__all__ = [
    "HierarchyAnalyzer",
    "HierarchyBuilder",
    "HierarchyResult",
    "Node",
    "ProcessingQueue",
    "RawNode",
    "Relationship",
    "RelationshipType",
    "SimilarityCalculator",
    "SimilarityResult",
    "__version__",
]
