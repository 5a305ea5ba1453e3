"""Candidate pairs for duplicate scans over large node sets.

Only nodes sharing a blocking key are compared: the same parent, the same
domain and top-level path segment, or a common title token. A block with
more than `window + 1` members is scanned as a sorted neighbourhood:
members are ordered by normalized title and each one is paired with the
next `window` members only.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence

from ..hierarchy.models import Node
from ..settings import settings
from .calculator import SimilarityCache

logger = logging.getLogger(__name__)

BlockKey = tuple[str, ...]


def blocking_keys(node: Node, cache: SimilarityCache) -> set[BlockKey]:
    keys: set[BlockKey] = set()
    if node.parent_id is not None:
        keys.add(("parent", node.parent_id))
    parsed = cache.parsed(node)
    if parsed is not None and parsed.segments:
        keys.add(("path", parsed.domain, parsed.segments[0]))
    _, tokens = cache.title(node)
    keys.update(("title", token) for token in tokens)
    return keys


def candidate_pairs(
    nodes: Sequence[Node],
    *,
    window: int = settings.blocking_window,
    cache: SimilarityCache | None = None,
) -> list[list[int]]:
    """For each node index, the sorted later indices it should be compared with.

    Fills `cache` with every node's parsed URL and title.
    """
    cache = cache if cache is not None else SimilarityCache()
    blocks: dict[BlockKey, list[int]] = defaultdict(list)
    for i, node in enumerate(nodes):
        for key in blocking_keys(node, cache):
            blocks[key].append(i)

    partners: list[set[int]] = [set() for _ in nodes]
    for members in blocks.values():
        if len(members) < 2:
            continue
        if len(members) > window + 1:
            members = sorted(members, key=lambda i: (cache.title(nodes[i])[0], nodes[i].url))
        for pos, i in enumerate(members):
            for j in members[pos + 1 : pos + 1 + window]:
                if i < j:
                    partners[i].add(j)
                else:
                    partners[j].add(i)

    result = [sorted(p) for p in partners]
    logger.debug(
        "blocking: %d nodes, %d blocks, %d candidate pairs",
        len(nodes),
        len(blocks),
        sum(len(p) for p in result),
    )
    return result
