"""Asynchronous staged processing of large catalogs."""

from .models import (
    STAGES,
    ItemError,
    JobArtifacts,
    JobCheckpoint,
    JobRequest,
    JobStatus,
    JobType,
    PipelineProgress,
    ProcessingError,
    ProcessingJob,
    ProcessingStage,
    QueueStats,
)
from .queue import ProcessingQueue, QueueConfig
from .stages import ResultSink, StageHandler, default_stage_handlers

__all__ = [
    "STAGES",
    "ItemError",
    "JobArtifacts",
    "JobCheckpoint",
    "JobRequest",
    "JobStatus",
    "JobType",
    "PipelineProgress",
    "ProcessingError",
    "ProcessingJob",
    "ProcessingQueue",
    "ProcessingStage",
    "QueueConfig",
    "QueueStats",
    "ResultSink",
    "StageHandler",
    "default_stage_handlers",
]
