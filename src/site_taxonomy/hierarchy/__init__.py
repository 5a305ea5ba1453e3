"""Hierarchy construction: flat URL list -> category tree."""

from .builder import HierarchyBuilder, build_hierarchy
from .models import (
    BuildOptions,
    ContentStatus,
    HierarchyResult,
    HierarchyStats,
    Node,
    NodeMetadata,
    RawNode,
)
from .tree import NodeTree
from .urls import ParsedUrl, node_id_for, normalize_url, parse_url

__all__ = [
    "BuildOptions",
    "ContentStatus",
    "HierarchyBuilder",
    "HierarchyResult",
    "HierarchyStats",
    "Node",
    "NodeMetadata",
    "NodeTree",
    "ParsedUrl",
    "RawNode",
    "build_hierarchy",
    "node_id_for",
    "normalize_url",
    "parse_url",
]
