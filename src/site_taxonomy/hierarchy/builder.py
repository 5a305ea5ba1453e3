from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from ..errors import InvalidURLError
from .models import BuildOptions, HierarchyResult, HierarchyStats, Node, NodeMetadata, RawNode
from .tree import assign_depths, find_cycles
from .urls import (
    ParsedUrl,
    domain_root,
    node_id_for,
    normalize_url,
    parent_candidates,
    parse_url,
    slug_for,
    title_from_slug,
)

logger = logging.getLogger(__name__)

RawInput = RawNode | Mapping[str, Any] | str


@dataclass
class _Draft:
    """Mutable node state while a build is in progress."""

    id: str
    url: str
    source_url: str
    parsed: ParsedUrl | None
    title: str
    metadata: NodeMetadata
    parent_url: str | None = None
    parent_id: str | None = None
    children: list[str] = field(default_factory=list)
    depth: int = 0
    position: int = 0

    @property
    def segments(self) -> tuple[str, ...]:
        return self.parsed.segments if self.parsed else ()


@dataclass
class _BuildState:
    drafts: dict[str, _Draft] = field(default_factory=dict)
    by_url: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


class HierarchyBuilder:
    """Constructs a category tree from a flat list of URLs.

    All state lives in the call to `build`, so one builder can serve
    concurrent callers.
    """

    def build(self, raw_nodes: Iterable[RawInput], options: BuildOptions | None = None) -> HierarchyResult:
        opts = options or BuildOptions()
        state = _BuildState()

        self._create_drafts(state, raw_nodes)

        if opts.preserve_existing:
            self._link_explicit(state)
        if opts.auto_detect_relationships:
            self._link_inferred(state)

        self._assign_depths(state)
        self._assign_positions(state)

        validation: list[str] = []
        if opts.validate_integrity:
            validation = self._validate(state, max_depth_warning=opts.max_depth_warning)

        nodes = [self._freeze(d, opts.project_scope) for d in state.drafts.values()]
        result = HierarchyResult(
            nodes=nodes,
            root_ids=[n.id for n in nodes if n.parent_id is None],
            max_depth=max((n.depth for n in nodes), default=0),
            stats=_stats(nodes),
            warnings=[*state.warnings, *validation],
        )
        logger.debug(
            "built hierarchy: %d nodes, %d roots, depth %d, %d warnings",
            len(nodes),
            len(result.root_ids),
            result.max_depth,
            len(result.warnings),
        )
        return result

    # --- step 1: normalize + dedup ---

    def _create_drafts(self, state: _BuildState, raw_nodes: Iterable[RawInput]) -> None:
        for index, item in enumerate(raw_nodes):
            try:
                raw = RawNode.coerce(item)
            except ValidationError:
                state.warnings.append(f"Invalid record skipped at index {index}")
                continue

            parsed = parse_url(raw.url)
            try:
                normalized = normalize_url(raw.url)
            except InvalidURLError:
                state.warnings.append(f"Invalid URL: {raw.url}")
                normalized = raw.url.strip().lower()
                parsed = None

            if normalized in state.by_url:
                state.warnings.append(f"Duplicate URL skipped: {raw.url}")
                continue

            node_id = node_id_for(normalized)
            slug = slug_for(parsed.segments) if parsed else "unknown"
            metadata = NodeMetadata.from_raw(raw.metadata, lastmod=raw.lastmod)
            if raw.changefreq is not None or raw.priority is not None:
                extra = dict(metadata.extra)
                if raw.changefreq is not None:
                    extra.setdefault("changefreq", raw.changefreq)
                if raw.priority is not None:
                    extra.setdefault("priority", raw.priority)
                metadata = NodeMetadata(
                    sku_count=metadata.sku_count,
                    has_content=metadata.has_content,
                    content_status=metadata.content_status,
                    last_modified=metadata.last_modified,
                    extra=extra,
                )

            state.drafts[node_id] = _Draft(
                id=node_id,
                url=normalized,
                source_url=raw.url,
                parsed=parsed,
                title=raw.title or title_from_slug(slug) or normalized,
                metadata=metadata,
                parent_url=raw.parent_url,
            )
            state.by_url[normalized] = node_id

    # --- step 2: parent/child ---

    def _attach(self, state: _BuildState, child: _Draft, parent_id: str) -> None:
        child.parent_id = parent_id
        parent = state.drafts.get(parent_id)
        if parent is not None:
            parent.children.append(child.id)

    def _link_explicit(self, state: _BuildState) -> None:
        for draft in state.drafts.values():
            if not draft.parent_url:
                continue
            try:
                parent_url = normalize_url(draft.parent_url)
            except InvalidURLError:
                state.warnings.append(f"Invalid URL: {draft.parent_url}")
                continue
            if parent_url == draft.url:
                continue
            self._attach(state, draft, state.by_url.get(parent_url) or node_id_for(parent_url))

    def _link_inferred(self, state: _BuildState) -> None:
        pending = [d for d in state.drafts.values() if d.parent_id is None and d.parsed is not None]
        pending.sort(key=lambda d: len(d.segments))

        for draft in pending:
            parsed = draft.parsed
            assert parsed is not None
            if not parsed.segments:
                continue

            parent_id = None
            for candidate in parent_candidates(parsed):
                parent_id = state.by_url.get(candidate)
                if parent_id is not None:
                    break
            if parent_id is None:
                parent_id = state.by_url.get(domain_root(parsed))

            if parent_id is not None and parent_id != draft.id:
                self._attach(state, draft, parent_id)

    # --- step 3 + 4: depth and sibling order ---

    def _assign_depths(self, state: _BuildState) -> None:
        drafts = state.drafts
        depths, circular = assign_depths(
            {nid: d.children for nid, d in drafts.items()},
            {nid: d.parent_id for nid, d in drafts.items()},
            list(drafts),
        )
        for node_id, depth in depths.items():
            drafts[node_id].depth = depth
        for node_id in circular:
            state.warnings.append(f"Circular reference detected at node: {node_id}")

    def _assign_positions(self, state: _BuildState) -> None:
        groups: dict[str | None, list[_Draft]] = {}
        for draft in state.drafts.values():
            groups.setdefault(draft.parent_id, []).append(draft)
        for siblings in groups.values():
            siblings.sort(key=lambda d: d.url)
            for position, draft in enumerate(siblings):
                draft.position = position

        for draft in state.drafts.values():
            draft.children.sort(key=lambda cid: state.drafts[cid].position)

    # --- step 5: validation ---

    def _validate(self, state: _BuildState, *, max_depth_warning: int) -> list[str]:
        drafts = state.drafts
        warnings: list[str] = []

        for src, dst in find_cycles({nid: d.children for nid, d in drafts.items()}, list(drafts)):
            warnings.append(f"Cycle detected: {src} -> {dst}")

        for draft in drafts.values():
            if draft.parent_id is not None and draft.parent_id not in drafts:
                warnings.append(f"Orphaned node detected: {draft.url}")

        max_depth = max((d.depth for d in drafts.values()), default=0)
        if max_depth > max_depth_warning:
            warnings.append(f"Very deep hierarchy detected: {max_depth} levels")

        return warnings

    def _freeze(self, draft: _Draft, project_scope: str | None) -> Node:
        segments = draft.segments
        return Node(
            id=draft.id,
            url=draft.url,
            path=draft.parsed.path if draft.parsed else "",
            title=draft.title,
            slug=slug_for(segments) if draft.parsed else "unknown",
            breadcrumb=segments,
            depth=draft.depth,
            parent_id=draft.parent_id,
            children=tuple(draft.children),
            position=draft.position,
            metadata=draft.metadata,
            source_url=draft.source_url,
            project_scope=project_scope,
        )


def _stats(nodes: list[Node]) -> HierarchyStats:
    child_counts = [len(n.children) for n in nodes]
    average = sum(child_counts) / len(nodes) if nodes else 0.0
    return HierarchyStats(
        total_nodes=len(nodes),
        root_nodes=sum(1 for n in nodes if n.parent_id is None),
        leaf_nodes=sum(1 for n in nodes if not n.children),
        average_children=round(average, 2),
        max_children=max(child_counts, default=0),
    )


def build_hierarchy(raw_nodes: Iterable[RawInput], options: BuildOptions | None = None) -> HierarchyResult:
    return HierarchyBuilder().build(raw_nodes, options)
