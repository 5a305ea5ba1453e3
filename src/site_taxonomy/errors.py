from __future__ import annotations


class TaxonomyError(Exception):
    """Base class for errors raised by the taxonomy core."""


class ConfigurationError(TaxonomyError, ValueError):
    pass


class InvalidURLError(TaxonomyError, ValueError):
    def __init__(self, url: str, reason: str = "unparseable"):
        super().__init__(f"Invalid URL {url!r}: {reason}")
        self.url = url
        self.reason = reason


class InvalidJobError(TaxonomyError, ValueError):
    """A submitted job does not have a valid shape."""


class JobNotFoundError(TaxonomyError, KeyError):
    def __init__(self, job_id: str):
        super().__init__(job_id)
        self.job_id = job_id

    def __str__(self) -> str:
        return f"Job {self.job_id} not found"


class JobStateError(TaxonomyError):
    """An operation is not legal for the job's current status."""


class StageTimeoutError(TaxonomyError, TimeoutError):
    def __init__(self, stage: str, timeout: float):
        super().__init__(f"Stage {stage} timed out after {timeout:g}s")
        self.stage = stage
        self.timeout = timeout


class TransientProcessingError(TaxonomyError):
    """Raised by item operations for failures worth retrying."""
