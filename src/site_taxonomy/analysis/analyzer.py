from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field

from ..errors import InvalidURLError
from ..hierarchy.models import HierarchyResult, Node
from ..hierarchy.tree import NodeTree
from ..hierarchy.urls import normalize_url
from ..settings import settings
from ..similarity.calculator import SimilarityCache, SimilarityCalculator, SimilarityConfig
from ..similarity.text import normalize_title
from .relationships import Relationship, RelationshipIndex, RelationshipType

logger = logging.getLogger(__name__)


@dataclass
class AnalyzerConfig:
    # siblings scoring below `sibling_min_similarity` get `sibling_floor`
    sibling_min_similarity: float = 0.3
    sibling_floor: float = 0.5
    cross_link_strength: float = 0.5
    duplicate_strength: float = 0.9
    cluster_edge_strength: float = 0.5
    unbalanced_children: int = settings.unbalanced_children
    similarity: SimilarityConfig = field(default_factory=SimilarityConfig)


@dataclass
class AnalysisResult:
    relationships: list[Relationship]
    index: RelationshipIndex

    @property
    def tree(self) -> NodeTree:
        return self.index.tree


@dataclass
class HealthReport:
    orphan_count: int
    duplicate_count: int
    max_depth: int
    avg_children_per_node: float
    unbalanced_nodes: list[Node]
    node_count: int
    cycles_detected: int = 0

    @property
    def degraded(self) -> bool:
        return self.cycles_detected > 0


def _dedup_url(url: str) -> str:
    try:
        return normalize_url(url)
    except InvalidURLError:
        return url.strip().lower().rstrip("/")


class HierarchyAnalyzer:
    """Classifies node pairs into relationships and derives clusters and health.

    Each `analyze` call works on its own similarity cache, so concurrent
    analyses do not share state.
    """

    def __init__(self, config: AnalyzerConfig | None = None):
        self.config = config or AnalyzerConfig()
        self.calculator = SimilarityCalculator(self.config.similarity)

    def analyze(self, nodes: Iterable[Node] | HierarchyResult) -> AnalysisResult:
        if isinstance(nodes, HierarchyResult):
            nodes = nodes.nodes
        tree = NodeTree(nodes)
        cache = SimilarityCache()

        siblings_by_parent: dict[str, list[Node]] = {}
        by_url: dict[str, list[str]] = {}
        by_title: dict[str, list[str]] = {}
        for node in tree:
            if node.parent_id is not None:
                siblings_by_parent.setdefault(node.parent_id, []).append(node)
            by_url.setdefault(_dedup_url(node.url), []).append(node.id)
            title = normalize_title(node.title)
            if title:
                by_title.setdefault(title, []).append(node.id)

        relationships: list[Relationship] = []
        for node in tree:
            relationships.extend(self._parent_child(node, tree))
            relationships.extend(self._siblings(node, siblings_by_parent, cache))
            relationships.extend(self._cross_links(node, tree))
            relationships.extend(self._orphan(node))
            relationships.extend(self._duplicates(node, by_url, by_title))

        index = RelationshipIndex(relationships, tree)
        logger.debug(
            "analysis: %d nodes, %d relationships %s (cache %d hits / %d misses)",
            len(tree),
            len(relationships),
            index.counts(),
            cache.hits,
            cache.misses,
        )
        return AnalysisResult(relationships=relationships, index=index)

    # --- classification ---

    def _parent_child(self, node: Node, tree: NodeTree) -> list[Relationship]:
        return [
            Relationship(
                type=RelationshipType.PARENT_CHILD,
                source_id=node.id,
                target_id=child.id,
                strength=1.0,
                metadata={"depth_difference": child.depth - node.depth},
            )
            for child in tree.children_of(node.id)
        ]

    def _siblings(
        self,
        node: Node,
        siblings_by_parent: dict[str, list[Node]],
        cache: SimilarityCache,
    ) -> list[Relationship]:
        if node.parent_id is None:
            return []
        out = []
        for sibling in siblings_by_parent.get(node.parent_id, ()):
            if sibling.id == node.id:
                continue
            sim = self.calculator.similarity(node, sibling, cache)
            strength = sim.overall
            if strength < self.config.sibling_min_similarity:
                strength = self.config.sibling_floor
            out.append(
                Relationship(
                    type=RelationshipType.SIBLING,
                    source_id=node.id,
                    target_id=sibling.id,
                    strength=strength,
                    metadata={"similarity": sim.overall, "confidence": sim.confidence},
                )
            )
        return out

    @staticmethod
    def _related(a: Node, b: Node) -> bool:
        return (
            a.parent_id == b.id
            or b.parent_id == a.id
            or (a.parent_id is not None and a.parent_id == b.parent_id)
        )

    def _cross_links(self, node: Node, tree: NodeTree) -> list[Relationship]:
        url = node.url.lower()
        out = []
        for other in tree:
            if other.id == node.id or other.id.lower() not in url:
                continue
            if self._related(node, other):
                continue
            out.append(
                Relationship(
                    type=RelationshipType.CROSS_LINK,
                    source_id=node.id,
                    target_id=other.id,
                    strength=self.config.cross_link_strength,
                    metadata={"link_type": "url_reference"},
                )
            )
        return out

    def _orphan(self, node: Node) -> list[Relationship]:
        if node.parent_id is None and not node.children and not node.is_domain_root:
            return [
                Relationship(
                    type=RelationshipType.ORPHAN,
                    source_id=node.id,
                    target_id=node.id,
                    strength=1.0,
                    metadata={"reason": "no parent or children"},
                )
            ]
        return []

    def _duplicates(
        self,
        node: Node,
        by_url: dict[str, list[str]],
        by_title: dict[str, list[str]],
    ) -> list[Relationship]:
        url_matches = by_url.get(_dedup_url(node.url), [])
        title_matches = by_title.get(normalize_title(node.title), [])
        candidates = [*url_matches, *title_matches]

        out = []
        seen: set[str] = set()
        for other_id in candidates:
            if other_id == node.id or other_id in seen:
                continue
            seen.add(other_id)
            out.append(
                Relationship(
                    type=RelationshipType.DUPLICATE,
                    source_id=node.id,
                    target_id=other_id,
                    strength=self.config.duplicate_strength,
                    metadata={"duplicate_type": "url" if other_id in url_matches else "title"},
                )
            )
        return out

    # --- derived ---

    def find_clusters(
        self,
        analysis: AnalysisResult,
        nodes: Iterable[Node] | None = None,
        min_size: int = 3,
    ) -> list[list[Node]]:
        """Connected components of the strong-sibling graph."""
        index = analysis.index
        threshold = self.config.cluster_edge_strength
        visited: set[str] = set()
        clusters: list[list[Node]] = []

        for start in nodes if nodes is not None else analysis.tree:
            if start.id in visited:
                continue
            cluster: list[Node] = []
            queue = deque([start])
            while queue:
                node = queue.popleft()
                if node.id in visited:
                    continue
                visited.add(node.id)
                cluster.append(node)
                for related in index.related(node.id, RelationshipType.SIBLING):
                    if related.id in visited:
                        continue
                    if index.strength(node.id, related.id, RelationshipType.SIBLING) > threshold:
                        queue.append(related)
            if len(cluster) >= min_size:
                clusters.append(cluster)

        return clusters

    def analyze_health(self, analysis: AnalysisResult, root_id: str | None = None) -> HealthReport:
        """Depth-first health scan from `root_id` (or from every root).

        Cycles do not stop the scan; they are counted in `cycles_detected`.
        """
        tree = analysis.tree
        index = analysis.index
        starts = [root_id] if root_id is not None else [*tree.root_ids(), *tree.ids()]

        seen: set[str] = set()
        revisits: list[str] = []
        orphans = duplicates = max_depth = total_children = 0
        unbalanced: list[Node] = []

        for start in starts:
            if start in seen:
                continue
            for node, _level in tree.walk(start, revisits=revisits):
                if node.id in seen:
                    continue
                seen.add(node.id)
                total_children += len(node.children)
                max_depth = max(max_depth, node.depth)
                if index.has(node.id, RelationshipType.ORPHAN):
                    orphans += 1
                if index.has(node.id, RelationshipType.DUPLICATE):
                    duplicates += 1
                if len(node.children) > self.config.unbalanced_children:
                    unbalanced.append(node)

        if revisits:
            logger.warning("health scan hit %d circular reference(s)", len(revisits))

        return HealthReport(
            orphan_count=orphans,
            duplicate_count=duplicates,
            max_depth=max_depth,
            avg_children_per_node=total_children / len(seen) if seen else 0.0,
            unbalanced_nodes=unbalanced,
            node_count=len(seen),
            cycles_detected=len(revisits),
        )
