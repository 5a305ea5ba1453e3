from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from functools import cached_property
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict

from .tree import NodeTree


class ContentStatus(str, Enum):
    PENDING = "pending"
    SCRAPED = "scraped"
    PROCESSED = "processed"
    ERROR = "error"
    MISSING = "missing"


_TRUTHY = {"1", "true", "yes", "y", "on"}

# raw key -> typed field; both spellings show up in catalog exports
_KNOWN_KEYS = {
    "sku_count": "sku_count",
    "skuCount": "sku_count",
    "has_content": "has_content",
    "hasContent": "has_content",
    "content_status": "content_status",
    "contentStatus": "content_status",
    "last_modified": "last_modified",
    "lastModified": "last_modified",
    "lastmod": "last_modified",
}


def coerce_datetime(value: Any) -> datetime | None:
    """Best-effort timestamp parsing. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    dt: datetime | None = None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = float(value)
        if ts > 1e11:  # milliseconds
            ts /= 1000.0
        try:
            dt = datetime.fromtimestamp(ts, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def _coerce_int(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _coerce_status(value: Any) -> ContentStatus:
    if isinstance(value, ContentStatus):
        return value
    try:
        return ContentStatus(str(value).strip().lower())
    except ValueError:
        return ContentStatus.PENDING


@dataclass(frozen=True, slots=True)
class NodeMetadata:
    """Typed view over the metadata bag of a catalog entry.

    Known fields are coerced; everything else is kept in `extra`.
    """

    sku_count: int = 0
    has_content: bool = False
    content_status: ContentStatus = ContentStatus.PENDING
    last_modified: datetime | None = None
    extra: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        # read-only, so frozen nodes stay hashable
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any] | None, *, lastmod: Any = None) -> NodeMetadata:
        known: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in (raw or {}).items():
            target = _KNOWN_KEYS.get(key)
            if target is None:
                extra[key] = value
            else:
                known.setdefault(target, value)

        last_modified = coerce_datetime(known.get("last_modified"))
        if last_modified is None:
            last_modified = coerce_datetime(lastmod)

        return cls(
            sku_count=_coerce_int(known.get("sku_count", 0)),
            has_content=_coerce_bool(known.get("has_content", False)),
            content_status=_coerce_status(known.get("content_status", ContentStatus.PENDING)),
            last_modified=last_modified,
            extra=extra,
        )

    def get(self, key: str, default: Any = None) -> Any:
        target = _KNOWN_KEYS.get(key, key)
        if target in {"sku_count", "has_content", "content_status", "last_modified"}:
            return getattr(self, target)
        return self.extra.get(key, default)


@dataclass(frozen=True, slots=True)
class Node:
    """A catalog entry placed in the hierarchy.

    `id` is derived from the normalized `url`. `source_url` is the URL as
    supplied (query string included).
    """

    id: str
    url: str
    path: str
    title: str
    slug: str
    breadcrumb: tuple[str, ...] = ()
    depth: int = 0
    parent_id: str | None = None
    children: tuple[str, ...] = ()
    position: int = 0
    metadata: NodeMetadata = field(default_factory=NodeMetadata)
    source_url: str | None = None
    project_scope: str | None = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def is_domain_root(self) -> bool:
        return self.path == "/"


class RawNode(BaseModel):
    """One record of the flat input catalog (e.g. a sitemap entry)."""

    model_config = ConfigDict(extra="ignore")

    url: str
    title: str | None = None
    lastmod: str | datetime | None = None
    changefreq: str | None = None
    priority: float | None = None
    metadata: dict[str, Any] | None = None
    # explicit parent, honoured with BuildOptions.preserve_existing
    parent_url: str | None = None

    @classmethod
    def coerce(cls, item: RawNode | str | Mapping[str, Any]) -> RawNode:
        """Accept a model, a bare URL string or a mapping; raises ValidationError."""
        if isinstance(item, cls):
            return item
        if isinstance(item, str):
            return cls(url=item)
        return cls.model_validate(item)


@dataclass
class BuildOptions:
    project_scope: str | None = None
    auto_detect_relationships: bool = True
    validate_integrity: bool = True
    preserve_existing: bool = False
    max_depth_warning: int = 10


@dataclass(frozen=True, slots=True)
class HierarchyStats:
    total_nodes: int
    root_nodes: int
    leaf_nodes: int
    average_children: float
    max_children: int


@dataclass
class HierarchyResult:
    nodes: list[Node]
    root_ids: list[str]
    max_depth: int
    stats: HierarchyStats
    warnings: list[str] = field(default_factory=list)

    @cached_property
    def tree(self) -> NodeTree:
        return NodeTree(self.nodes)

    def get(self, node_id: str) -> Node | None:
        return self.tree.get(node_id)

    def by_url(self, url: str) -> Node | None:
        for node in self.nodes:
            if node.url == url:
                return node
        return None
