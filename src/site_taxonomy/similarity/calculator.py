from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace

from ..errors import ConfigurationError
from ..hierarchy.models import Node
from ..hierarchy.urls import ParsedUrl, parse_url
from ..settings import TaxonomySettings, settings
from .text import edit_similarity, jaccard, normalize_title, tokenize

logger = logging.getLogger(__name__)

YEAR_SECONDS = 365 * 24 * 60 * 60


@dataclass(frozen=True)
class SimilarityWeights:
    url: float = 0.25
    title: float = 0.25
    structural: float = 0.2
    content: float = 0.3

    @property
    def total(self) -> float:
        return self.url + self.title + self.structural + self.content


@dataclass(frozen=True)
class SimilarityThresholds:
    minimum: float = settings.similar_min_score
    high: float = 0.7
    cluster: float = settings.cluster_threshold


@dataclass(frozen=True)
class SimilarityConfig:
    weights: SimilarityWeights = field(default_factory=SimilarityWeights)
    thresholds: SimilarityThresholds = field(default_factory=SimilarityThresholds)

    def __post_init__(self) -> None:
        w = self.weights
        if min(w.url, w.title, w.structural, w.content) < 0:
            raise ConfigurationError("similarity weights must be non-negative")
        if w.total <= 0:
            raise ConfigurationError("similarity weights must not all be zero")

    @classmethod
    def from_settings(cls, s: TaxonomySettings) -> SimilarityConfig:
        return cls(thresholds=SimilarityThresholds(minimum=s.similar_min_score, cluster=s.cluster_threshold))


@dataclass(frozen=True, slots=True)
class SimilarityResult:
    node1_id: str
    node2_id: str
    url: float
    title: float
    structural: float
    content: float
    overall: float
    confidence: float

    def dimensions(self) -> dict[str, float]:
        return {
            "url": self.url,
            "title": self.title,
            "structural": self.structural,
            "content": self.content,
        }

    def swapped(self) -> SimilarityResult:
        return replace(self, node1_id=self.node2_id, node2_id=self.node1_id)


@dataclass
class SimilarityCache:
    """Lookup cache for one analysis run.

    Create one per run and pass it down; do not share it between runs.
    Parsed URLs and titles are kept per node. Pair results are kept only
    for memoized `similarity` calls, which repeat pairs in both orders.
    """

    urls: dict[str, ParsedUrl | None] = field(default_factory=dict)
    titles: dict[str, tuple[str, list[str]]] = field(default_factory=dict)
    pairs: dict[tuple[str, str], SimilarityResult] = field(default_factory=dict)
    hits: int = 0
    misses: int = 0

    def parsed(self, node: Node) -> ParsedUrl | None:
        if node.id not in self.urls:
            self.urls[node.id] = parse_url(node.source_url or node.url)
        return self.urls[node.id]

    def title(self, node: Node) -> tuple[str, list[str]]:
        if node.id not in self.titles:
            self.titles[node.id] = (normalize_title(node.title), tokenize(node.title))
        return self.titles[node.id]


def _clamp(x: float) -> float:
    return max(0.0, min(1.0, x))


def _closeness(a: float, b: float) -> float:
    top = max(a, b)
    if top <= 0:
        return 1.0
    return 1.0 - abs(a - b) / top


def _path_similarity(s1: Sequence[str], s2: Sequence[str]) -> float:
    if not s1 and not s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    prefix = 0
    for x, y in zip(s1, s2):
        if x != y:
            break
        prefix += 1
    prefix_score = prefix / max(len(s1), len(s2))
    return prefix_score * 0.6 + jaccard(s1, s2) * 0.4


def _param_similarity(p1: dict[str, str], p2: dict[str, str]) -> float:
    if not p1 and not p2:
        return 1.0
    if not p1 or not p2:
        return 0.0
    common = p1.keys() & p2.keys()
    equal = sum(1 for k in common if p1[k] == p2[k])
    size = len(p1) + len(p2)
    return (2 * len(common) / size) * 0.5 + (2 * equal / size) * 0.5


class SimilarityCalculator:
    """Pairwise multi-factor similarity between tree nodes.

    Four dimensions (URL, title, structural, content) are combined into a
    weighted overall score. Results are symmetric and deterministic.
    """

    def __init__(self, config: SimilarityConfig | None = None):
        self.config = config or SimilarityConfig()

    def similarity(
        self,
        a: Node,
        b: Node,
        cache: SimilarityCache | None = None,
        *,
        memoize: bool = True,
    ) -> SimilarityResult:
        """Score a pair. With `memoize`, the result is stored in `cache.pairs`."""
        cache = cache if cache is not None else SimilarityCache()
        if not memoize:
            return self._score(a, b, cache)

        key = (a.id, b.id) if a.id <= b.id else (b.id, a.id)
        cached = cache.pairs.get(key)
        if cached is not None:
            cache.hits += 1
            return cached if cached.node1_id == a.id else cached.swapped()
        cache.misses += 1

        result = self._score(a, b, cache)
        cache.pairs[key] = result if a.id == key[0] else result.swapped()
        return result

    def score_at_least(
        self,
        a: Node,
        b: Node,
        threshold: float,
        cache: SimilarityCache | None = None,
    ) -> SimilarityResult | None:
        """The pair's result if its overall score reaches `threshold`, else None.

        The cheap dimensions are scored first; the title comparison is
        skipped when even a perfect title could not lift the pair to
        `threshold`. Nothing is memoized.
        """
        cache = cache if cache is not None else SimilarityCache()
        w = self.config.weights
        url = self._url(a, b, cache)
        structural = self._structural(a, b)
        content = self._content(a, b)
        best = (url * w.url + w.title + structural * w.structural + content * w.content) / w.total
        if best < threshold - 1e-9:
            return None
        result = self._result(a, b, (url, self._title(a, b, cache), structural, content))
        return result if result.overall >= threshold else None

    def _score(self, a: Node, b: Node, cache: SimilarityCache) -> SimilarityResult:
        scores = (
            self._url(a, b, cache),
            self._title(a, b, cache),
            self._structural(a, b),
            self._content(a, b),
        )
        return self._result(a, b, scores)

    def _result(self, a: Node, b: Node, scores: tuple[float, float, float, float]) -> SimilarityResult:
        w = self.config.weights
        overall = (
            scores[0] * w.url + scores[1] * w.title + scores[2] * w.structural + scores[3] * w.content
        ) / w.total
        return SimilarityResult(
            node1_id=a.id,
            node2_id=b.id,
            url=scores[0],
            title=scores[1],
            structural=scores[2],
            content=scores[3],
            overall=_clamp(overall),
            confidence=self._confidence(scores),
        )

    def is_high(self, result: SimilarityResult) -> bool:
        return result.overall >= self.config.thresholds.high

    # --- dimensions ---

    def _url(self, a: Node, b: Node, cache: SimilarityCache) -> float:
        pa, pb = cache.parsed(a), cache.parsed(b)
        if pa is None or pb is None:
            raw_a = (a.source_url or a.url).strip().lower()
            raw_b = (b.source_url or b.url).strip().lower()
            return 1.0 if raw_a and raw_a == raw_b else 0.0

        domain = 1.0 if pa.domain == pb.domain else 0.0
        path = _path_similarity(pa.segments, pb.segments)
        params = _param_similarity(pa.params, pb.params)
        return _clamp(domain * 0.2 + path * 0.5 + params * 0.3)

    def _title(self, a: Node, b: Node, cache: SimilarityCache) -> float:
        t1, tokens1 = cache.title(a)
        t2, tokens2 = cache.title(b)
        if t1 == t2:
            return 1.0
        return _clamp(jaccard(tokens1, tokens2) * 0.6 + edit_similarity(t1, t2) * 0.4)

    def _structural(self, a: Node, b: Node) -> float:
        depth = 1.0 / (1 + abs(a.depth - b.depth))
        children = _closeness(len(a.children), len(b.children))
        same_parent = 1.0 if a.parent_id == b.parent_id else 0.0
        return _clamp(depth * 0.3 + children * 0.3 + same_parent * 0.4)

    def _content(self, a: Node, b: Node) -> float:
        ma, mb = a.metadata, b.metadata
        status = 1.0 if ma.content_status == mb.content_status else 0.0
        presence = 1.0 if ma.has_content == mb.has_content else 0.0
        skus = _closeness(ma.sku_count, mb.sku_count)

        if ma.last_modified is None and mb.last_modified is None:
            recency = 1.0
        elif ma.last_modified is None or mb.last_modified is None:
            recency = 0.0
        else:
            delta = abs((ma.last_modified - mb.last_modified).total_seconds())
            recency = max(0.0, 1.0 - delta / YEAR_SECONDS)

        return _clamp(status * 0.2 + presence * 0.2 + skus * 0.3 + recency * 0.3)

    @staticmethod
    def _confidence(scores: Sequence[float]) -> float:
        mean = sum(scores) / len(scores)
        variance = sum((s - mean) ** 2 for s in scores) / len(scores)
        consistency = 1.0 - math.sqrt(variance)
        coverage = sum(1 for s in scores if s > 0) / len(scores)
        return _clamp(consistency * 0.7 + coverage * 0.3)

    # --- derived operations ---

    def find_similar(
        self,
        target: Node,
        candidates: Iterable[Node],
        limit: int = 10,
        *,
        cache: SimilarityCache | None = None,
    ) -> list[SimilarityResult]:
        cache = cache if cache is not None else SimilarityCache()
        minimum = self.config.thresholds.minimum
        found = []
        for node in candidates:
            if node.id == target.id:
                continue
            result = self.similarity(target, node, cache)
            if result.overall >= minimum:
                found.append(result)
        found.sort(key=lambda r: r.overall, reverse=True)
        return found[:limit]

    def find_duplicates(
        self,
        nodes: Sequence[Node],
        threshold: float = 0.85,
        *,
        cache: SimilarityCache | None = None,
    ) -> list[SimilarityResult]:
        """Every unordered pair scoring at or above `threshold`, best first.

        Each pair is scored exactly once, so pair results are not memoized.
        """
        cache = cache if cache is not None else SimilarityCache()
        unique = list({node.id: node for node in nodes}.values())
        duplicates = []
        for i, a in enumerate(unique):
            for b in unique[i + 1 :]:
                result = self.score_at_least(a, b, threshold, cache)
                if result is not None:
                    duplicates.append(result)
        duplicates.sort(key=lambda r: r.overall, reverse=True)
        pairs = len(unique) * (len(unique) - 1) // 2
        logger.debug("duplicate scan: %d pairs, %d above %.2f", pairs, len(duplicates), threshold)
        return duplicates

    def cluster_by_similarity(
        self,
        nodes: Sequence[Node],
        threshold: float | None = None,
        *,
        include_singletons: bool = False,
        cache: SimilarityCache | None = None,
    ) -> list[list[Node]]:
        """Greedy clustering; every node is assigned to at most one cluster.

        `threshold` defaults to the configured cluster threshold.
        """
        threshold = self.config.thresholds.cluster if threshold is None else threshold
        cache = cache if cache is not None else SimilarityCache()
        assigned: set[str] = set()
        clusters: list[list[Node]] = []
        for seed in nodes:
            if seed.id in assigned:
                continue
            cluster = [seed]
            assigned.add(seed.id)
            for other in nodes:
                if other.id in assigned:
                    continue
                if self.score_at_least(seed, other, threshold, cache) is not None:
                    cluster.append(other)
                    assigned.add(other.id)
            if len(cluster) > 1 or include_singletons:
                clusters.append(cluster)
        clusters.sort(key=len, reverse=True)
        return clusters


def similarity(a: Node, b: Node, config: SimilarityConfig | None = None) -> SimilarityResult:
    return SimilarityCalculator(config).similarity(a, b)
