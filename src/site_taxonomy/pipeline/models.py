from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _now() -> datetime:
    return datetime.now(UTC)


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class ProcessingStage(str, Enum):
    URL_PARSING = "url_parsing"
    HIERARCHY_BUILDING = "hierarchy_building"
    RELATIONSHIP_DETECTION = "relationship_detection"
    GAP_ANALYSIS = "gap_analysis"
    SIMILARITY_CALCULATION = "similarity_calculation"
    VIEW_REFRESH = "view_refresh"
    COMPLETE = "complete"


# Executed in this order; COMPLETE is the terminal marker, not a stage.
STAGES: tuple[ProcessingStage, ...] = (
    ProcessingStage.URL_PARSING,
    ProcessingStage.HIERARCHY_BUILDING,
    ProcessingStage.RELATIONSHIP_DETECTION,
    ProcessingStage.GAP_ANALYSIS,
    ProcessingStage.SIMILARITY_CALCULATION,
    ProcessingStage.VIEW_REFRESH,
)


class JobType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    SINGLE = "single"


class JobRequest(BaseModel):
    """What a caller submits to the queue."""

    project_scope: str
    type: JobType = JobType.FULL
    payload: list[Any] = Field(default_factory=list)
    total_items: int | None = Field(default=None, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("project_scope")
    @classmethod
    def _scope_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("project_scope must not be empty")
        return v

    @property
    def item_count(self) -> int:
        return self.total_items if self.total_items is not None else len(self.payload)


@dataclass
class ProcessingError:
    message: str
    code: str
    stage: ProcessingStage | None = None
    timestamp: datetime = field(default_factory=_now)
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ItemError:
    index: int
    message: str
    stage: ProcessingStage | None = None


@dataclass(frozen=True, slots=True)
class JobCheckpoint:
    """Items before `index` in `stage` are done."""

    stage: ProcessingStage
    index: int


@dataclass
class JobArtifacts:
    """Outputs of each stage, filled in as the job advances."""

    raw_nodes: list[Any] = field(default_factory=list)
    hierarchy: Any = None
    analysis: Any = None
    gaps: list[Any] = field(default_factory=list)
    duplicates: list[Any] = field(default_factory=list)
    clusters: list[Any] = field(default_factory=list)
    stage_results: dict[str, Any] = field(default_factory=dict)
    # latest process_in_batches results per stage, aligned with its items
    batch_results: dict[str, list[Any]] = field(default_factory=dict)


@dataclass
class ProcessingJob:
    id: str
    project_scope: str
    type: JobType
    payload: list[Any]
    total_items: int
    metadata: dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    stage: ProcessingStage = ProcessingStage.URL_PARSING
    completed_stages: list[ProcessingStage] = field(default_factory=list)
    processed_items: int = 0
    progress: float = 0.0
    created_at: datetime = field(default_factory=_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    items_started_at: datetime | None = None
    error: ProcessingError | None = None
    item_errors: list[ItemError] = field(default_factory=list)
    checkpoint: JobCheckpoint | None = None
    # set by a resuming retry; consumed by the first batch run of that stage
    resume_from: JobCheckpoint | None = None
    artifacts: JobArtifacts = field(default_factory=JobArtifacts)
    retry_of: str | None = None

    def set_processed(self, processed: int) -> None:
        self.processed_items = processed
        if self.total_items > 0:
            self.progress = min(100.0, processed / self.total_items * 100)
        else:
            self.progress = 100.0


@dataclass(frozen=True, slots=True)
class PipelineProgress:
    job_id: str
    current_stage: ProcessingStage
    completed_stages: tuple[ProcessingStage, ...]
    items_processed: int
    total_items: int
    progress: float
    errors: int
    eta_seconds: float | None = None
    throughput: float | None = None


@dataclass(frozen=True, slots=True)
class QueueStats:
    pending: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.active + self.completed + self.failed + self.cancelled
