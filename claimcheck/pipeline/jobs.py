"""
Pipeline job tracking.

A PipelineJob is owned by the orchestrator for the lifetime of one run.
Status moves strictly forward:

    queued -> extracting -> validating -> gating -> repairing (0..N)
           -> finalizing -> completed | failed | cancelled

Terminal jobs are dropped from the registry once their final status has
been reported to a caller.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from claimcheck.errors import JobNotFoundError
from claimcheck.utils.logging import get_logger

logger = get_logger(__name__)


class JobStatus(str, Enum):
    """Pipeline job states."""

    QUEUED = "queued"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    GATING = "gating"
    REPAIRING = "repairing"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

# Progress percentage on entering each status
STATUS_PROGRESS = {
    JobStatus.QUEUED: 0,
    JobStatus.EXTRACTING: 10,
    JobStatus.VALIDATING: 30,
    JobStatus.GATING: 60,
    JobStatus.REPAIRING: 70,
    JobStatus.FINALIZING: 95,
    JobStatus.COMPLETED: 100,
    JobStatus.FAILED: 100,
    JobStatus.CANCELLED: 100,
}

REPAIR_PROGRESS_START = 70
REPAIR_PROGRESS_END = 90


def repair_progress(attempt: int, max_attempts: int) -> int:
    """Progress during repair attempt ``attempt`` (1-based)."""
    if max_attempts <= 0:
        return REPAIR_PROGRESS_START
    span = REPAIR_PROGRESS_END - REPAIR_PROGRESS_START
    fraction = min(attempt, max_attempts) / max_attempts
    return REPAIR_PROGRESS_START + round(span * fraction)


def generate_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:12]}"


@dataclass
class PipelineJob:
    """State of one pipeline run."""

    job_id: str
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    result_id: str | None = None
    error: str | None = None
    failed_step: str | None = None
    repair_attempt: int = 0
    cancel_requested: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, status: JobStatus, progress: int | None = None) -> None:
        """Move to a new status.

        Raises:
            RuntimeError: If the job already reached a terminal status.
        """
        if self.is_terminal:
            raise RuntimeError(f"Job {self.job_id} is already {self.status.value}")
        self.status = status
        self.progress = STATUS_PROGRESS[status] if progress is None else progress
        self.updated_at = datetime.now(UTC)

    def complete(self, result_id: str) -> None:
        self.transition(JobStatus.COMPLETED)
        self.result_id = result_id

    def fail(self, error: str, *, cancelled: bool = False) -> None:
        """Record a failure at the current step."""
        step = self.status.value
        self.transition(JobStatus.CANCELLED if cancelled else JobStatus.FAILED)
        self.error = error
        self.failed_step = step

    def snapshot(self) -> dict[str, Any]:
        """Polling view: status, progress and result or error."""
        result: dict[str, Any] = {
            "jobId": self.job_id,
            "status": self.status.value,
            "progress": self.progress,
            "updatedAt": self.updated_at.isoformat(),
        }
        if self.result_id is not None:
            result["resultId"] = self.result_id
        if self.error is not None:
            result["error"] = self.error
            result["failedStep"] = self.failed_step
        if self.status == JobStatus.REPAIRING:
            result["repairAttempt"] = self.repair_attempt
        return result


class JobRegistry:
    """In-memory jobs of one orchestrator."""

    def __init__(self) -> None:
        self._jobs: dict[str, PipelineJob] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def create(self, job_id: str | None = None) -> PipelineJob:
        """
        Register a new queued job.

        Raises:
            ValueError: If a job with the same id is still registered.
        """
        job_id = job_id or generate_job_id()
        if job_id in self._jobs:
            raise ValueError(f"Job already exists: {job_id}")
        job = PipelineJob(job_id=job_id)
        self._jobs[job_id] = job
        logger.debug("Job registered", job_id=job_id)
        return job

    def get(self, job_id: str) -> PipelineJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def report(self, job_id: str) -> dict[str, Any]:
        """Status snapshot; a terminal job is discarded once reported."""
        job = self.get(job_id)
        snapshot = job.snapshot()
        if job.is_terminal:
            del self._jobs[job_id]
            logger.debug("Job discarded", job_id=job_id, status=job.status.value)
        return snapshot

    def discard(self, job_id: str) -> None:
        """Drop a job whose outcome was handed to the caller directly."""
        if self._jobs.pop(job_id, None) is not None:
            logger.debug("Job discarded", job_id=job_id)

    def request_cancel(self, job_id: str) -> bool:
        """Ask a running job to stop at its next step boundary.

        Returns:
            True if the request was recorded, False if the job already ended.
        """
        job = self.get(job_id)
        if job.is_terminal:
            return False
        job.cancel_requested = True
        logger.info("Job cancellation requested", job_id=job_id, status=job.status.value)
        return True
