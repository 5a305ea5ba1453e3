from datetime import UTC, datetime, timedelta
from itertools import combinations

import pytest

from site_taxonomy.errors import ConfigurationError
from site_taxonomy.hierarchy import Node, NodeMetadata, build_hierarchy
from site_taxonomy.similarity import (
    SimilarityCache,
    SimilarityCalculator,
    SimilarityConfig,
    SimilarityThresholds,
    SimilarityWeights,
    similarity,
)
from site_taxonomy.settings import TaxonomySettings
from site_taxonomy.similarity.text import edit_similarity, jaccard, levenshtein, tokenize


def _node(node_id, url, title, **kwargs):
    return Node(id=node_id, url=url, path="", title=title, slug=node_id, **kwargs)


def test_text_helpers():
    assert tokenize("Running Shoes, for MEN!") == ["running", "shoes", "for", "men"]
    assert tokenize("a an to") == []
    assert jaccard([], []) == 0.0
    assert jaccard(["a", "b"], ["b", "c"]) == pytest.approx(1 / 3)
    assert levenshtein("kitten", "sitting") == 3
    assert edit_similarity("", "") == 1.0
    assert edit_similarity("abcd", "abcf") == pytest.approx(0.75)


def test_self_similarity_is_one(catalog_records):
    result = build_hierarchy(catalog_records)
    calc = SimilarityCalculator()
    for node in result.nodes:
        sim = calc.similarity(node, node)
        for score in sim.dimensions().values():
            assert score == pytest.approx(1.0)
        assert sim.overall == pytest.approx(1.0)
        assert sim.confidence == pytest.approx(1.0)


def test_similarity_is_symmetric(catalog_records):
    result = build_hierarchy(catalog_records)
    calc = SimilarityCalculator()
    for a, b in combinations(result.nodes, 2):
        ab = calc.similarity(a, b)
        ba = calc.similarity(b, a)
        assert ab.node1_id == a.id and ba.node1_id == b.id
        assert ab.dimensions() == pytest.approx(ba.dimensions())
        assert ab.overall == pytest.approx(ba.overall)
        assert ab.confidence == pytest.approx(ba.confidence)


def test_scores_are_bounded(catalog_records):
    result = build_hierarchy(catalog_records)
    calc = SimilarityCalculator()
    for a, b in combinations(result.nodes, 2):
        sim = calc.similarity(a, b)
        for score in [*sim.dimensions().values(), sim.overall, sim.confidence]:
            assert 0.0 <= score <= 1.0


def test_url_dimension_query_params():
    calc = SimilarityCalculator()
    a = _node("a", "https://x.com/p", "P", source_url="https://x.com/p?color=red&size=9")
    b = _node("b", "https://x.com/p", "P", source_url="https://x.com/p?color=red&size=10")
    c = _node("c", "https://x.com/p", "P", source_url="https://x.com/p")
    # domain 0.2 + path 0.5 + params 0.3 * (0.5 * 1 + 0.5 * 0.5)
    assert calc.similarity(a, b).url == pytest.approx(0.2 + 0.5 + 0.3 * 0.75)
    assert calc.similarity(a, c).url == pytest.approx(0.7)


def test_content_dimension_recency():
    now = datetime(2025, 1, 1, tzinfo=UTC)
    calc = SimilarityCalculator()
    a = _node("a", "https://x.com/a", "A", metadata=NodeMetadata(last_modified=now))
    b = _node("b", "https://x.com/b", "B", metadata=NodeMetadata(last_modified=now - timedelta(days=730)))
    c = _node("c", "https://x.com/c", "C")
    # status, presence and sku closeness all match; only recency differs
    assert calc.similarity(a, b).content == pytest.approx(0.7)
    assert calc.similarity(a, c).content == pytest.approx(0.7)
    assert calc.similarity(c, c).content == pytest.approx(1.0)


def test_cache_is_reused_within_a_run(shop_hierarchy):
    calc = SimilarityCalculator()
    cache = SimilarityCache()
    a, b = shop_hierarchy.nodes[:2]
    first = calc.similarity(a, b, cache)
    second = calc.similarity(b, a, cache)
    assert cache.misses == 1
    assert cache.hits == 1
    assert second.node1_id == b.id
    assert second.overall == first.overall


def test_find_duplicates_above_one_is_empty(catalog_records):
    nodes = build_hierarchy(catalog_records).nodes
    assert SimilarityCalculator().find_duplicates(nodes, threshold=1.1) == []


def test_find_duplicates_pairs_are_unique_and_sorted(catalog_records):
    nodes = build_hierarchy(catalog_records).nodes
    pairs = SimilarityCalculator().find_duplicates(nodes, threshold=0.0)
    keys = [frozenset((p.node1_id, p.node2_id)) for p in pairs]
    assert len(keys) == len(set(keys)) == len(nodes) * (len(nodes) - 1) // 2
    scores = [p.overall for p in pairs]
    assert scores == sorted(scores, reverse=True)


def test_find_similar(catalog_records):
    result = build_hierarchy(catalog_records)
    calc = SimilarityCalculator()
    red = result.by_url("https://shop.example.com/shoes/red")
    found = calc.find_similar(red, result.nodes, limit=3)
    assert 0 < len(found) <= 3
    assert all(r.node2_id != red.id for r in found)
    assert all(r.overall >= calc.config.thresholds.minimum for r in found)
    assert [r.overall for r in found] == sorted((r.overall for r in found), reverse=True)


def test_clusters_never_overlap(catalog_records):
    nodes = build_hierarchy(catalog_records).nodes
    calc = SimilarityCalculator()
    for threshold in (0.0, 0.3, 0.5, 0.8):
        clusters = calc.cluster_by_similarity(nodes, threshold=threshold)
        ids = [n.id for cluster in clusters for n in cluster]
        assert len(ids) == len(set(ids))
        assert all(len(c) > 1 for c in clusters)
        assert [len(c) for c in clusters] == sorted((len(c) for c in clusters), reverse=True)


def test_clusters_with_singletons_cover_every_node(catalog_records):
    nodes = build_hierarchy(catalog_records).nodes
    clusters = SimilarityCalculator().cluster_by_similarity(nodes, threshold=0.99, include_singletons=True)
    assert sorted(n.id for c in clusters for n in c) == sorted(n.id for n in nodes)


def test_weights_are_validated():
    with pytest.raises(ConfigurationError):
        SimilarityConfig(weights=SimilarityWeights(url=-0.1))
    with pytest.raises(ConfigurationError):
        SimilarityConfig(weights=SimilarityWeights(url=0, title=0, structural=0, content=0))


def test_custom_weights_change_overall():
    a = _node("a", "https://x.com/a", "Same Title")
    b = _node("b", "https://y.com/b", "Same Title")
    title_only = SimilarityConfig(weights=SimilarityWeights(url=0, title=1, structural=0, content=0))
    assert similarity(a, b, title_only).overall == pytest.approx(1.0)
    assert similarity(a, b).overall < 1.0


def test_find_duplicates_keeps_only_per_node_lookups(catalog_records):
    """Each pair is scored once, so no pair results are memoized."""
    nodes = build_hierarchy(catalog_records).nodes
    cache = SimilarityCache()
    SimilarityCalculator().find_duplicates(nodes, threshold=0.0, cache=cache)
    assert len(cache.pairs) == 0
    assert len(cache.urls) == len(cache.titles) == len(nodes)
    assert cache.hits == cache.misses == 0


def test_score_at_least_agrees_with_full_scoring(catalog_records):
    nodes = build_hierarchy(catalog_records).nodes
    calc = SimilarityCalculator()
    for threshold in (0.0, 0.5, 0.7, 0.85, 1.1):
        for a, b in combinations(nodes, 2):
            full = calc.similarity(a, b)
            pruned = calc.score_at_least(a, b, threshold)
            if full.overall >= threshold:
                assert pruned == full
            else:
                assert pruned is None


def test_cluster_threshold_comes_from_config(catalog_records):
    nodes = build_hierarchy(catalog_records).nodes
    strict = SimilarityCalculator(SimilarityConfig(thresholds=SimilarityThresholds(cluster=1.1)))
    assert strict.cluster_by_similarity(nodes) == []

    loose = SimilarityCalculator(SimilarityConfig(thresholds=SimilarityThresholds(cluster=0.0)))
    assert [len(c) for c in loose.cluster_by_similarity(nodes)] == [len(nodes)]

    config = SimilarityConfig.from_settings(TaxonomySettings(cluster_threshold=0.2, similar_min_score=0.1))
    assert config.thresholds.cluster == 0.2
    assert config.thresholds.minimum == 0.1
