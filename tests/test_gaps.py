from datetime import UTC, datetime, timedelta

import pytest

from site_taxonomy.analysis import GapAnalyzer, GapConfig, GapType, gap_report
from site_taxonomy.hierarchy import ContentStatus, Node, NodeMetadata

NOW = datetime(2025, 6, 1, tzinfo=UTC)


def _node(node_id, *, depth=1, children=(), title=None, **metadata):
    return Node(
        id=node_id,
        url=f"https://shop.example.com/{node_id}",
        path=f"/{node_id}",
        title=title if title is not None else node_id.title(),
        slug=node_id,
        depth=depth,
        children=tuple(children),
        metadata=NodeMetadata(**metadata),
    )


def _types(gaps):
    return {g.gap_type for g in gaps}


def test_missing_content():
    gaps = GapAnalyzer(now=NOW).analyze_node(_node("empty", sku_count=5))
    assert GapType.MISSING in _types(gaps)
    missing = next(g for g in gaps if g.gap_type == GapType.MISSING)
    assert missing.suggested_action == "Create new content for this URL"


def test_outdated_processed_content():
    node = _node(
        "stale",
        has_content=True,
        sku_count=20,
        content_status=ContentStatus.PROCESSED,
        last_modified=NOW - timedelta(days=400),
    )
    gaps = GapAnalyzer(now=NOW).analyze_node(node)
    outdated = [g for g in gaps if g.gap_type == GapType.OUTDATED]
    assert len(outdated) == 1
    assert outdated[0].details == {"age_days": 400}
    assert GapType.MISSING not in _types(gaps)


def test_thin_content_uses_estimated_length():
    analyzer = GapAnalyzer(now=NOW)
    thin = analyzer.analyze_node(_node("thin", has_content=True, sku_count=1))
    assert GapType.THIN in _types(thin)
    # 100 + 5 * 50 = 350 chars
    rich = analyzer.analyze_node(_node("rich", has_content=True, sku_count=5))
    assert GapType.THIN not in _types(rich)


def test_missing_metadata():
    gaps = GapAnalyzer(now=NOW).analyze_node(_node("bare", title="Unknown"))
    no_meta = next(g for g in gaps if g.gap_type == GapType.NO_METADATA)
    assert no_meta.details["missing_elements"] == ["SKU count", "Page title"]


def test_healthy_node_has_no_gaps():
    node = _node(
        "good",
        children=("a", "b"),
        has_content=True,
        sku_count=40,
        content_status=ContentStatus.PROCESSED,
        last_modified=NOW - timedelta(days=10),
    )
    analyzer = GapAnalyzer(now=NOW)
    assert analyzer.analyze_node(node) == []
    assert analyzer.quality_score(node) == pytest.approx(1.0)


def test_priority_is_bounded_and_weighted_by_type():
    analyzer = GapAnalyzer(now=NOW)
    node = _node("top", depth=0, children=("a",), sku_count=500, last_modified=NOW)
    assert analyzer.priority(node, GapType.MISSING) == 1.0
    assert analyzer.priority(node, GapType.NO_METADATA) == pytest.approx(0.5)


def test_identify_gaps_sorted_by_priority():
    nodes = [
        _node("deep", depth=8),
        _node("shallow", depth=0, sku_count=80, children=("x",)),
        _node("mid", depth=3, has_content=True, sku_count=1),
    ]
    gaps = GapAnalyzer(now=NOW).identify_gaps(nodes)
    priorities = [g.priority for g in gaps]
    assert priorities == sorted(priorities, reverse=True)
    assert all(0.0 <= p <= 1.0 for p in priorities)


def test_custom_thresholds():
    node = _node("page", has_content=True, sku_count=5)
    assert GapType.THIN in _types(GapAnalyzer(GapConfig(thin_chars=1000), now=NOW).analyze_node(node))


def test_gap_report():
    nodes = [_node(f"p{i}", depth=0, sku_count=100, children=("c",), last_modified=NOW) for i in range(12)]
    gaps = GapAnalyzer(now=NOW).identify_gaps(nodes)
    report = gap_report(gaps)

    assert report.total == len(gaps)
    assert report.by_type["missing"] == 12
    assert set(report.by_type) == {t.value for t in GapType}
    assert report.high_priority + report.medium_priority + report.low_priority == report.total
    assert report.high_priority >= 12
    assert "Create content for 12 missing pages" in report.recommendations
    assert any(r.startswith("Focus on") for r in report.recommendations)


def test_empty_report_recommends_quality_work():
    report = gap_report([])
    assert report.total == 0
    assert report.recommendations == ["Content coverage is good; focus on quality improvements"]
