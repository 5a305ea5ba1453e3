"""Default stage handlers wiring the hierarchy, analysis and similarity core
into the processing queue.

A handler is `async (queue, job) -> Any`; it reads earlier outputs from
`job.artifacts` and stores its own there. A non-None return value is kept
in `job.artifacts.stage_results` under the stage name. CPU-bound work runs
in a thread so the event loop stays responsive.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol

from ..analysis.analyzer import HierarchyAnalyzer
from ..analysis.gaps import GapAnalyzer, gap_report
from ..hierarchy.builder import HierarchyBuilder
from ..hierarchy.models import BuildOptions, RawNode
from ..settings import settings
from ..similarity.blocking import candidate_pairs
from ..similarity.calculator import SimilarityCache, SimilarityResult
from .models import JobStatus, ProcessingJob, ProcessingStage

if TYPE_CHECKING:
    from .queue import ProcessingQueue

logger = logging.getLogger(__name__)

StageHandler = Callable[["ProcessingQueue", ProcessingJob], Awaitable[Any]]


class ResultSink(Protocol):
    """Downstream consumer of a finished job (persistence, views)."""

    async def publish(self, job: ProcessingJob) -> None: ...


def default_stage_handlers(
    sink: ResultSink | None = None,
    *,
    builder: HierarchyBuilder | None = None,
    analyzer: HierarchyAnalyzer | None = None,
    gap_analyzer: GapAnalyzer | None = None,
    duplicate_threshold: float = settings.duplicate_threshold,
    cluster_min_size: int = settings.cluster_min_size,
    blocking_window: int = settings.blocking_window,
) -> dict[ProcessingStage, StageHandler]:
    builder = builder or HierarchyBuilder()
    analyzer = analyzer or HierarchyAnalyzer()

    async def parse_urls(queue: ProcessingQueue, job: ProcessingJob) -> dict[str, int]:
        async def parse(item: Any) -> RawNode:
            return RawNode.coerce(item)

        parsed = await queue.process_in_batches(job.payload, parse, job.id)
        job.artifacts.raw_nodes = parsed
        valid = sum(1 for raw in parsed if raw is not None)
        return {"valid": valid, "invalid": len(parsed) - valid}

    async def build_hierarchy(queue: ProcessingQueue, job: ProcessingJob) -> dict[str, Any]:
        raw = [r for r in job.artifacts.raw_nodes if r is not None]
        options = BuildOptions(
            project_scope=job.project_scope,
            preserve_existing=bool(job.metadata.get("preserve_existing", False)),
            max_depth_warning=settings.deep_hierarchy_warning,
        )
        result = await asyncio.to_thread(builder.build, raw, options)
        job.artifacts.hierarchy = result
        return {"nodes": len(result.nodes), "max_depth": result.max_depth, "warnings": len(result.warnings)}

    async def detect_relationships(queue: ProcessingQueue, job: ProcessingJob) -> dict[str, int]:
        analysis = await asyncio.to_thread(analyzer.analyze, job.artifacts.hierarchy)
        job.artifacts.analysis = analysis
        return analysis.index.counts()

    async def analyze_gaps(queue: ProcessingQueue, job: ProcessingJob) -> dict[str, Any]:
        gaps = await asyncio.to_thread((gap_analyzer or GapAnalyzer()).identify_gaps, job.artifacts.hierarchy.nodes)
        job.artifacts.gaps = gaps
        return {"total": len(gaps), "by_type": gap_report(gaps).by_type}

    async def calculate_similarity(queue: ProcessingQueue, job: ProcessingJob) -> dict[str, int] | None:
        nodes = job.artifacts.hierarchy.nodes
        calculator = analyzer.calculator
        cache = SimilarityCache()
        partners = await asyncio.to_thread(candidate_pairs, nodes, window=blocking_window, cache=cache)

        # every node is already in the cache, so scan threads only read it
        def scan(i: int) -> list[SimilarityResult]:
            found = []
            for j in partners[i]:
                result = calculator.score_at_least(nodes[i], nodes[j], duplicate_threshold, cache)
                if result is not None:
                    found.append(result)
            return found

        async def scan_node(i: int) -> list[SimilarityResult]:
            return await asyncio.to_thread(scan, i)

        found = await queue.process_in_batches(range(len(nodes)), scan_node, job.id)
        if job.status == JobStatus.CANCELLED:
            return None

        duplicates = [result for batch in found if batch for result in batch]
        duplicates.sort(key=lambda r: r.overall, reverse=True)
        job.artifacts.duplicates = duplicates
        job.artifacts.clusters = analyzer.find_clusters(job.artifacts.analysis, min_size=cluster_min_size)
        candidates = sum(len(p) for p in partners)
        logger.debug("job %s: %d candidate pairs, %d duplicates", job.id, candidates, len(duplicates))
        return {
            "candidates": candidates,
            "duplicates": len(duplicates),
            "clusters": len(job.artifacts.clusters),
        }

    async def refresh_views(queue: ProcessingQueue, job: ProcessingJob) -> None:
        if sink is not None:
            await sink.publish(job)

    return {
        ProcessingStage.URL_PARSING: parse_urls,
        ProcessingStage.HIERARCHY_BUILDING: build_hierarchy,
        ProcessingStage.RELATIONSHIP_DETECTION: detect_relationships,
        ProcessingStage.GAP_ANALYSIS: analyze_gaps,
        ProcessingStage.SIMILARITY_CALCULATION: calculate_similarity,
        ProcessingStage.VIEW_REFRESH: refresh_views,
    }
