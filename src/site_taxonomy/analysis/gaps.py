from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ..hierarchy.models import ContentStatus, Node


class GapType(str, Enum):
    MISSING = "missing"
    OUTDATED = "outdated"
    THIN = "thin"
    NO_METADATA = "no_metadata"
    LOW_QUALITY = "low_quality"


_MULTIPLIER = {
    GapType.MISSING: 1.5,
    GapType.OUTDATED: 1.0,
    GapType.THIN: 0.8,
    GapType.LOW_QUALITY: 0.7,
    GapType.NO_METADATA: 0.5,
}

_ACTION = {
    GapType.MISSING: "Create new content for this URL",
    GapType.OUTDATED: "Review and update content",
    GapType.THIN: "Expand content with more detail",
    GapType.NO_METADATA: "Add missing metadata",
    GapType.LOW_QUALITY: "Improve content quality and completeness",
}


@dataclass(frozen=True, slots=True)
class ContentGap:
    node_id: str
    url: str
    gap_type: GapType
    priority: float
    reason: str
    suggested_action: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class GapConfig:
    outdated_days: int = 180
    thin_chars: int = 300
    # estimated length = base + per sku + per child
    base_chars: int = 100
    chars_per_sku: int = 50
    chars_per_child: int = 200
    low_quality: float = 0.5


class GapAnalyzer:
    """Flags content gaps per node and ranks them by priority.

    `now` is fixed at construction so a run is reproducible.
    """

    def __init__(self, config: GapConfig | None = None, *, now: datetime | None = None):
        self.config = config or GapConfig()
        self.now = now or datetime.now(UTC)

    def identify_gaps(self, nodes: Iterable[Node]) -> list[ContentGap]:
        gaps: list[ContentGap] = []
        for node in nodes:
            gaps.extend(self.analyze_node(node))
        gaps.sort(key=lambda g: g.priority, reverse=True)
        return gaps

    def analyze_node(self, node: Node) -> list[ContentGap]:
        md = node.metadata
        gaps: list[ContentGap] = []
        age = self._age_days(node)

        if md.content_status == ContentStatus.MISSING or not md.has_content:
            gaps.append(self._gap(node, GapType.MISSING, "No content exists for this node"))

        if md.content_status == ContentStatus.PROCESSED and age is not None and age > self.config.outdated_days:
            gaps.append(
                self._gap(node, GapType.OUTDATED, f"Content not updated in {age} days", age_days=age)
            )

        if md.has_content:
            length = self._estimated_length(node)
            if length < self.config.thin_chars:
                gaps.append(
                    self._gap(
                        node,
                        GapType.THIN,
                        f"Content appears thin (estimated {length} chars)",
                        content_length=length,
                    )
                )

        missing = []
        if md.sku_count == 0 and not node.children:
            missing.append("SKU count")
        if not node.title or node.title == "Unknown":
            missing.append("Page title")
        if missing:
            gaps.append(
                self._gap(
                    node,
                    GapType.NO_METADATA,
                    f"Missing metadata: {', '.join(missing)}",
                    missing_elements=missing,
                )
            )

        quality = self.quality_score(node)
        if quality < self.config.low_quality:
            gaps.append(
                self._gap(
                    node,
                    GapType.LOW_QUALITY,
                    f"Low quality score: {quality * 100:.1f}%",
                    quality_score=quality,
                )
            )

        return gaps

    def quality_score(self, node: Node) -> float:
        """0..1 completeness heuristic."""
        md = node.metadata
        score = 0.0
        if md.has_content:
            score += 0.3
        if md.content_status == ContentStatus.PROCESSED:
            score += 0.2
        if md.sku_count > 0:
            score += 0.2
        if node.title and node.title != "Unknown":
            score += 0.1
        age = self._age_days(node)
        if age is not None:
            if age < 90:
                score += 0.2
            elif age < 180:
                score += 0.1
        return score

    def priority(self, node: Node, gap_type: GapType) -> float:
        depth_score = max(0.0, 1 - node.depth / 10)
        sku_score = min(1.0, node.metadata.sku_count / 100)
        children_score = 1.0 if node.children else 0.0
        age = self._age_days(node)
        recency = max(0.0, 1 - age / 365) if age is not None else 0.0

        p = depth_score * 0.3 + sku_score * 0.3 + children_score * 0.2 + recency * 0.2
        return max(0.0, min(1.0, p * _MULTIPLIER[gap_type]))

    def _gap(self, node: Node, gap_type: GapType, reason: str, **details: Any) -> ContentGap:
        return ContentGap(
            node_id=node.id,
            url=node.url,
            gap_type=gap_type,
            priority=self.priority(node, gap_type),
            reason=reason,
            suggested_action=_ACTION[gap_type],
            details=details,
        )

    def _age_days(self, node: Node) -> int | None:
        lm = node.metadata.last_modified
        if lm is None:
            return None
        return max(0, (self.now - lm).days)

    def _estimated_length(self, node: Node) -> int:
        cfg = self.config
        return cfg.base_chars + node.metadata.sku_count * cfg.chars_per_sku + len(node.children) * cfg.chars_per_child


@dataclass
class GapReport:
    total: int
    by_type: dict[str, int]
    high_priority: int
    medium_priority: int
    low_priority: int
    recommendations: list[str]


def gap_report(gaps: list[ContentGap]) -> GapReport:
    by_type = Counter(g.gap_type.value for g in gaps)
    high = sum(1 for g in gaps if g.priority > 0.7)
    medium = sum(1 for g in gaps if 0.4 < g.priority <= 0.7)

    recs: list[str] = []
    if by_type[GapType.MISSING.value] > 10:
        recs.append(f"Create content for {by_type[GapType.MISSING.value]} missing pages")
    if by_type[GapType.OUTDATED.value]:
        recs.append(f"Update {by_type[GapType.OUTDATED.value]} outdated pages")
    if by_type[GapType.THIN.value]:
        recs.append(f"Expand {by_type[GapType.THIN.value]} thin content pages")
    if high:
        recs.append(f"Focus on {high} high-priority gaps first")
    if not recs:
        recs.append("Content coverage is good; focus on quality improvements")

    return GapReport(
        total=len(gaps),
        by_type={t.value: by_type.get(t.value, 0) for t in GapType},
        high_priority=high,
        medium_priority=medium,
        low_priority=len(gaps) - high - medium,
        recommendations=recs,
    )
