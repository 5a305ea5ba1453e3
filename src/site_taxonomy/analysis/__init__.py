"""Relationship detection, clustering, health and content-gap analysis."""

from .analyzer import AnalysisResult, AnalyzerConfig, HealthReport, HierarchyAnalyzer
from .gaps import ContentGap, GapAnalyzer, GapConfig, GapReport, GapType, gap_report
from .relationships import Relationship, RelationshipIndex, RelationshipType

__all__ = [
    "AnalysisResult",
    "AnalyzerConfig",
    "ContentGap",
    "GapAnalyzer",
    "GapConfig",
    "GapReport",
    "GapType",
    "HealthReport",
    "HierarchyAnalyzer",
    "Relationship",
    "RelationshipIndex",
    "RelationshipType",
    "gap_report",
]
