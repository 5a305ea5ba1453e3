import pytest

from site_taxonomy.analysis import GapAnalyzer
from site_taxonomy.pipeline import JobRequest, JobStatus, ProcessingQueue, QueueConfig, default_stage_handlers
from site_taxonomy.similarity import candidate_pairs

COLOURS = ["red", "blue", "green", "black", "white"]
KINDS = ["runner", "trail", "boot", "sandal"]


class CollectingSink:
    def __init__(self):
        self.published = []

    async def publish(self, job):
        self.published.append(job.id)


def _large_catalog(departments=10, categories=10, products=20):
    shop = "https://shop.example.com"
    records = [{"url": f"{shop}/", "title": "Home"}]
    for d in range(departments):
        records.append({"url": f"{shop}/dept-{d}", "title": f"Department {d}"})
        for c in range(categories):
            base = f"{shop}/dept-{d}/cat-{c}"
            records.append({"url": base, "title": f"Category {d} {c}"})
            for p in range(products):
                colour = COLOURS[p % len(COLOURS)]
                kind = KINDS[(p + c) % len(KINDS)]
                records.append(
                    {
                        "url": f"{base}/item-{p}",
                        "title": f"{colour} {kind} {d}-{c}-{p}",
                        "metadata": {"skuCount": p + 1, "hasContent": p % 3 != 0},
                    }
                )
    return records


@pytest.mark.asyncio
async def test_default_stages_fill_artifacts_and_publish(catalog_records):
    sink = CollectingSink()
    handlers = default_stage_handlers(sink, duplicate_threshold=0.0, cluster_min_size=3)
    async with ProcessingQueue(QueueConfig(workers=1, batch_size=3, retry_delay=0), handlers=handlers) as queue:
        job_id = await queue.submit(JobRequest(project_scope="shop", payload=catalog_records))
        job = await queue.wait(job_id, timeout=10)

    assert job.status == JobStatus.COMPLETED
    assert sink.published == [job_id]

    artifacts = job.artifacts
    nodes = artifacts.hierarchy.nodes
    assert len(nodes) == len(catalog_records)
    # threshold 0 keeps every candidate pair
    candidates = sum(len(js) for js in candidate_pairs(nodes))
    assert len(artifacts.duplicates) == candidates
    pairs = {frozenset((r.node1_id, r.node2_id)) for r in artifacts.duplicates}
    red, blue, green = (
        artifacts.hierarchy.by_url(f"https://shop.example.com/shoes/{colour}") for colour in ("red", "blue", "green")
    )
    assert frozenset((red.id, blue.id)) in pairs
    assert frozenset((blue.id, green.id)) in pairs
    assert [r.overall for r in artifacts.duplicates] == sorted((r.overall for r in artifacts.duplicates), reverse=True)
    assert len(artifacts.clusters) == 1
    assert artifacts.gaps
    assert artifacts.stage_results["similarity_calculation"] == {
        "candidates": candidates,
        "duplicates": candidates,
        "clusters": 1,
    }


@pytest.mark.asyncio
async def test_preserve_existing_comes_from_job_metadata():
    records = [
        {"url": "https://x.com/a", "parent_url": "https://x.com/b"},
        {"url": "https://x.com/b"},
    ]
    handlers = default_stage_handlers(gap_analyzer=GapAnalyzer())
    async with ProcessingQueue(QueueConfig(workers=1, retry_delay=0), handlers=handlers) as queue:
        job_id = await queue.submit(
            JobRequest(project_scope="x", payload=records, metadata={"preserve_existing": True})
        )
        job = await queue.wait(job_id, timeout=10)

    nodes = {n.url: n for n in job.artifacts.hierarchy.nodes}
    assert nodes["https://x.com/a"].parent_id == nodes["https://x.com/b"].id


@pytest.mark.asyncio
async def test_thousands_of_nodes_finish_within_the_default_stage_timeout():
    """A catalog of 2,000 products runs through every default stage."""
    records = _large_catalog()
    async with ProcessingQueue(QueueConfig(workers=1)) as queue:
        job_id = await queue.submit(JobRequest(project_scope="shop", payload=records))
        job = await queue.wait(job_id, timeout=300)

    assert job.status == JobStatus.COMPLETED, job.error
    assert len(job.artifacts.hierarchy.nodes) == len(records) == 2111
    similarity = job.artifacts.stage_results["similarity_calculation"]
    n = len(records)
    assert 0 < similarity["candidates"] < n * (n - 1) // 2 // 10
    assert job.processed_items == n
