from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..hierarchy.models import Node
from ..hierarchy.tree import NodeTree


class RelationshipType(str, Enum):
    PARENT_CHILD = "parent_child"
    SIBLING = "sibling"
    CROSS_LINK = "cross_link"
    ORPHAN = "orphan"
    DUPLICATE = "duplicate"


@dataclass(frozen=True, slots=True)
class Relationship:
    """A typed edge between two nodes. Orphans are self-edges."""

    type: RelationshipType
    source_id: str
    target_id: str
    strength: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def other(self, node_id: str) -> str:
        return self.target_id if self.source_id == node_id else self.source_id


class RelationshipIndex:
    """Lookups over the relationships of one analysis run.

    Every relationship is reachable from both of its endpoints.
    """

    def __init__(self, relationships: Iterable[Relationship], tree: NodeTree):
        self.tree = tree
        self._all: list[Relationship] = []
        self._by_node: dict[str, list[Relationship]] = {}
        for rel in relationships:
            self._all.append(rel)
            self._by_node.setdefault(rel.source_id, []).append(rel)
            if rel.target_id != rel.source_id:
                self._by_node.setdefault(rel.target_id, []).append(rel)

    def __len__(self) -> int:
        return len(self._all)

    def __iter__(self):
        return iter(self._all)

    def for_node(self, node_id: str, rel_type: RelationshipType | None = None) -> list[Relationship]:
        rels = self._by_node.get(node_id, [])
        if rel_type is None:
            return list(rels)
        return [r for r in rels if r.type == rel_type]

    def of_type(self, rel_type: RelationshipType) -> list[Relationship]:
        return [r for r in self._all if r.type == rel_type]

    def has(self, node_id: str, rel_type: RelationshipType) -> bool:
        return any(r.type == rel_type for r in self._by_node.get(node_id, ()))

    def related(self, node_id: str, rel_type: RelationshipType | None = None) -> list[Node]:
        """Nodes at the other end of `node_id`'s relationships (self-edges excluded)."""
        seen: set[str] = set()
        out: list[Node] = []
        for rel in self.for_node(node_id, rel_type):
            other_id = rel.other(node_id)
            if other_id == node_id or other_id in seen:
                continue
            seen.add(other_id)
            node = self.tree.get(other_id)
            if node is not None:
                out.append(node)
        return out

    def strength(self, a: str, b: str, rel_type: RelationshipType | None = None) -> float:
        best = 0.0
        for rel in self.for_node(a, rel_type):
            if rel.other(a) == b:
                best = max(best, rel.strength)
        return best

    def counts(self) -> dict[str, int]:
        c = Counter(r.type.value for r in self._all)
        return {t.value: c.get(t.value, 0) for t in RelationshipType}
