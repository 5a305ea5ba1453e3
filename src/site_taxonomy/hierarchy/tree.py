"""Flat node storage with parent/children index tables.

All traversals here are iterative and keep a visited set, so a corrupted
parent/children table (cycles, dangling references) terminates instead of
recursing forever.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Node


def assign_depths(
    children: Mapping[str, Sequence[str]],
    parents: Mapping[str, str | None],
    order: Sequence[str],
) -> tuple[dict[str, int], list[str]]:
    """Depth-first depth assignment from every root.

    Nodes that no root reaches (dangling parents first, then cycle members)
    are traversed afterwards starting at depth 0, so every node gets a depth.
    Returns `(depths, circular)` where `circular` lists each node that was
    reached a second time; that branch is not followed further.
    """
    known = set(order)
    depths: dict[str, int] = {}
    circular: list[str] = []
    visited: set[str] = set()

    def visit(start: str) -> None:
        stack = [(start, 0)]
        while stack:
            node_id, depth = stack.pop()
            if node_id not in known:
                continue
            if node_id in visited:
                circular.append(node_id)
                continue
            visited.add(node_id)
            depths[node_id] = depth
            for child_id in reversed(children.get(node_id, ())):
                stack.append((child_id, depth + 1))

    roots = [nid for nid in order if parents.get(nid) is None]
    dangling = [nid for nid in order if parents.get(nid) is not None and parents[nid] not in known]
    for node_id in [*roots, *dangling, *order]:
        if node_id not in visited:
            visit(node_id)

    return depths, circular


def find_cycles(children: Mapping[str, Sequence[str]], order: Sequence[str]) -> list[tuple[str, str]]:
    """Back edges found by a depth-first search with an explicit recursion stack."""
    visited: set[str] = set()
    on_stack: set[str] = set()
    back_edges: list[tuple[str, str]] = []

    for start in order:
        if start in visited:
            continue
        visited.add(start)
        on_stack.add(start)
        stack: list[tuple[str, Iterator[str]]] = [(start, iter(children.get(start, ())))]
        while stack:
            node_id, it = stack[-1]
            child_id = next(it, None)
            if child_id is None:
                stack.pop()
                on_stack.discard(node_id)
                continue
            if child_id in on_stack:
                back_edges.append((node_id, child_id))
                continue
            if child_id in visited:
                continue
            visited.add(child_id)
            on_stack.add(child_id)
            stack.append((child_id, iter(children.get(child_id, ()))))

    return back_edges


class NodeTree:
    """Arena of nodes keyed by id."""

    def __init__(self, nodes: Iterable[Node]):
        self._nodes: dict[str, Node] = {}
        for node in nodes:
            self._nodes.setdefault(node.id, node)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_id: str | None) -> Node | None:
        if node_id is None:
            return None
        return self._nodes.get(node_id)

    def ids(self) -> list[str]:
        return list(self._nodes)

    def parent_of(self, node_id: str) -> Node | None:
        node = self._nodes.get(node_id)
        return self.get(node.parent_id) if node else None

    def children_of(self, node_id: str) -> list[Node]:
        node = self._nodes.get(node_id)
        if node is None:
            return []
        return [self._nodes[c] for c in node.children if c in self._nodes]

    def root_ids(self) -> list[str]:
        return [n.id for n in self._nodes.values() if n.parent_id is None]

    def children_table(self) -> dict[str, tuple[str, ...]]:
        return {nid: n.children for nid, n in self._nodes.items()}

    def walk(self, start_id: str, *, revisits: list[str] | None = None) -> Iterator[tuple[Node, int]]:
        """Pre-order traversal yielding `(node, level)` below `start_id`.

        A node reached twice is not yielded again; its id is appended to
        `revisits` when given.
        """
        visited: set[str] = set()
        stack = [(start_id, 0)]
        while stack:
            node_id, level = stack.pop()
            node = self._nodes.get(node_id)
            if node is None:
                continue
            if node_id in visited:
                if revisits is not None:
                    revisits.append(node_id)
                continue
            visited.add(node_id)
            yield node, level
            for child_id in reversed(node.children):
                stack.append((child_id, level + 1))
