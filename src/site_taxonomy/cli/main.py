"""
site-taxonomy CLI - build and inspect category trees from URL catalogs
"""

from __future__ import annotations

import asyncio
import json
import logging

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from site_taxonomy.analysis import GapAnalyzer, HierarchyAnalyzer, gap_report
from site_taxonomy.hierarchy import BuildOptions, HierarchyBuilder, HierarchyResult
from site_taxonomy.hierarchy.sources import load_raw_nodes
from site_taxonomy.pipeline import JobRequest, JobStatus, ProcessingQueue, QueueConfig
from site_taxonomy.settings import settings
from site_taxonomy.similarity import SimilarityCache, SimilarityCalculator, SimilarityConfig

console = Console()


def _configure_logging(verbose: bool = False) -> None:
    level = "DEBUG" if verbose else (settings.log_level or "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _build(path: str, scope: str | None, preserve_existing: bool) -> HierarchyResult:
    raw = load_raw_nodes(path)
    options = BuildOptions(
        project_scope=scope,
        preserve_existing=preserve_existing,
        max_depth_warning=settings.deep_hierarchy_warning,
    )
    return HierarchyBuilder().build(raw, options)


def _print_warnings(warnings: list[str]) -> None:
    if not warnings:
        return
    console.print(f"\n[yellow]{len(warnings)} warning(s)[/yellow]")
    for w in warnings:
        console.print(f"  [yellow]•[/yellow] {w}")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def cli(verbose):
    """Site taxonomy - category trees from URL catalogs"""
    _configure_logging(verbose)


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--scope", default=None, help="Project scope stamped on every node")
@click.option("--preserve-existing", is_flag=True, help="Honour parent_url hints in the input")
@click.option("--json", "as_json", is_flag=True, help="Print the nodes as JSON")
def build(path, scope, preserve_existing, as_json):
    """Build the category tree for a catalog file"""
    result = _build(path, scope, preserve_existing)

    if as_json:
        payload = {
            "root_ids": result.root_ids,
            "max_depth": result.max_depth,
            "warnings": result.warnings,
            "nodes": [
                {
                    "id": n.id,
                    "url": n.url,
                    "title": n.title,
                    "depth": n.depth,
                    "parent_id": n.parent_id,
                    "children": list(n.children),
                    "position": n.position,
                }
                for n in result.nodes
            ],
        }
        console.print_json(json.dumps(payload))
        return

    table = Table(title=f"Hierarchy for {path}")
    table.add_column("Depth", style="cyan", width=6)
    table.add_column("Title", style="green")
    table.add_column("URL", style="blue", overflow="fold")
    table.add_column("Children", style="magenta", width=9)

    tree = result.tree
    for root_id in result.root_ids:
        for node, level in tree.walk(root_id):
            table.add_row(str(node.depth), "  " * level + node.title, node.url, str(len(node.children)))

    console.print(table)
    s = result.stats
    console.print(
        Panel.fit(
            f"[bold cyan]{s.total_nodes:,} nodes[/bold cyan]  roots {s.root_nodes}  leaves {s.leaf_nodes}  "
            f"max depth {result.max_depth}  avg children {s.average_children}"
        )
    )
    _print_warnings(result.warnings)


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--min-cluster", default=settings.cluster_min_size, help="Minimum cluster size")
def analyze(path, min_cluster):
    """Relationships, clusters and health for a catalog"""
    result = _build(path, None, False)
    analyzer = HierarchyAnalyzer()
    analysis = analyzer.analyze(result)

    counts = Table(title="Relationships")
    counts.add_column("Type", style="magenta")
    counts.add_column("Count", style="cyan", justify="right")
    for rel_type, count in analysis.index.counts().items():
        counts.add_row(rel_type, f"{count:,}")
    console.print(counts)

    health = analyzer.analyze_health(analysis)
    style = "red" if health.degraded else "green"
    console.print(
        Panel.fit(
            f"nodes {health.node_count:,}  orphans {health.orphan_count}  duplicates {health.duplicate_count}\n"
            f"max depth {health.max_depth}  avg children {health.avg_children_per_node:.2f}  "
            f"unbalanced {len(health.unbalanced_nodes)}  cycles {health.cycles_detected}",
            title="Health",
            style=style,
        )
    )

    clusters = analyzer.find_clusters(analysis, min_size=min_cluster)
    if clusters:
        console.print(f"\n[bold]{len(clusters)} sibling cluster(s)[/bold]")
        for cluster in clusters:
            console.print(f"  {len(cluster)}: " + ", ".join(n.title for n in cluster[:5]))


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--threshold", default=settings.duplicate_threshold, help="Minimum overall similarity")
@click.option("--limit", default=50, help="Max pairs shown")
def duplicates(path, threshold, limit):
    """Likely duplicate pages by pairwise similarity"""
    result = _build(path, None, False)
    calculator = SimilarityCalculator(SimilarityConfig.from_settings(settings))
    pairs = calculator.find_duplicates(result.nodes, threshold, cache=SimilarityCache())

    if not pairs:
        console.print("[yellow]No duplicates found[/yellow]")
        return

    table = Table(title=f"Duplicates (>= {threshold:.2f})")
    table.add_column("Score", style="cyan", width=7)
    table.add_column("Conf.", style="green", width=6)
    table.add_column("A", style="blue", overflow="fold")
    table.add_column("B", style="blue", overflow="fold")
    for r in pairs[:limit]:
        a, b = result.get(r.node1_id), result.get(r.node2_id)
        table.add_row(f"{r.overall:.3f}", f"{r.confidence:.2f}", a.url if a else r.node1_id, b.url if b else r.node2_id)
    console.print(table)


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--limit", default=20, help="Max gaps shown")
def gaps(path, limit):
    """Content gaps ranked by priority"""
    result = _build(path, None, False)
    found = GapAnalyzer().identify_gaps(result.nodes)
    report = gap_report(found)

    table = Table(title="Content gaps")
    table.add_column("Priority", style="cyan", width=8)
    table.add_column("Type", style="magenta", width=12)
    table.add_column("URL", style="blue", overflow="fold")
    table.add_column("Reason", style="white", overflow="fold")
    for g in found[:limit]:
        table.add_row(f"{g.priority:.2f}", g.gap_type.value, g.url, g.reason)
    console.print(table)

    console.print(
        Panel.fit(
            f"total {report.total}  high {report.high_priority}  medium {report.medium_priority}  "
            f"low {report.low_priority}",
            title="Summary",
        )
    )
    for rec in report.recommendations:
        console.print(f"  [green]→[/green] {rec}")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--scope", default="default", help="Project scope")
@click.option("--batch-size", default=settings.batch_size, help="Items per batch")
@click.option("--concurrency", default=settings.concurrency, help="Items in flight per batch")
@click.option("--timeout", default=settings.stage_timeout, help="Seconds per stage")
def run(path, scope, batch_size, concurrency, timeout):
    """Run the full staged pipeline over a catalog"""
    raw = load_raw_nodes(path)
    config = QueueConfig(batch_size=batch_size, concurrency=concurrency, stage_timeout=timeout, workers=1)
    job = asyncio.run(_run_pipeline(config, scope, raw))

    if job.status != JobStatus.COMPLETED:
        err = job.error
        console.print(f"[red]Job {job.id} {job.status.value}[/red]" + (f": {err.code} in {err.stage.value}: {err.message}" if err else ""))
        raise SystemExit(1)

    console.print(f"[green]✓ Job {job.id} completed[/green]")
    console.print_json(json.dumps(job.artifacts.stage_results))
    if job.item_errors:
        console.print(f"[yellow]{len(job.item_errors)} item(s) skipped[/yellow]")


async def _run_pipeline(config: QueueConfig, scope: str, raw: list):
    async with ProcessingQueue(config) as queue:
        job_id = await queue.submit(JobRequest(project_scope=scope, payload=raw))
        queue.on_progress(
            job_id,
            lambda p: logging.getLogger(__name__).debug(
                "%s %d/%d (%.0f%%)", p.current_stage.value, p.items_processed, p.total_items, p.progress
            ),
        )
        return await queue.wait(job_id)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
