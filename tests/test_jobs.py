"""
Tests for pipeline job tracking.

Test Perspectives Table:
| Case ID    | Input / Precondition                          | Perspective              | Expected Result                              | Notes          |
|------------|-----------------------------------------------|--------------------------|----------------------------------------------|----------------|
| TC-N-01    | New job                                       | Normal                   | queued, progress 0                           | -              |
| TC-N-02    | Walk every step to completed                  | Normal                   | Progress rises, resultId reported            | -              |
| TC-N-03    | Failure while validating                      | Normal                   | failed, failedStep=validating                | -              |
| TC-N-04    | Snapshot while repairing                      | Normal                   | repairAttempt included                       | -              |
| TC-N-05    | Repair progress                               | Normal                   | 70..90 across attempts                       | -              |
| TC-A-01    | Transition after terminal                     | Abnormal                 | RuntimeError                                 | -              |
| TC-A-02    | Terminal job reported                         | Boundary - cleanup       | Discarded; next lookup JobNotFoundError      | -              |
| TC-A-03    | Cancel a finished job                         | Boundary                 | False                                        | -              |
| TC-A-04    | Duplicate job id                              | Abnormal                 | ValueError                                   | -              |
| TC-A-05    | Unknown job id                                | Abnormal                 | JobNotFoundError                             | -              |
"""

import pytest

from claimcheck.errors import ErrorCode, JobNotFoundError
from claimcheck.pipeline import JobRegistry, JobStatus, PipelineJob
from claimcheck.pipeline.jobs import generate_job_id, repair_progress

pytestmark = pytest.mark.unit


class TestPipelineJob:
    """Tests for PipelineJob state transitions."""

    def test_new_job(self) -> None:
        """TC-N-01: Jobs start queued."""
        job = PipelineJob(job_id="job_1")
        assert job.status == JobStatus.QUEUED
        assert job.progress == 0
        assert not job.is_terminal

    def test_full_run(self) -> None:
        """TC-N-02: Progress rises through every step."""
        # Given: A queued job
        job = PipelineJob(job_id="job_1")
        progress = []

        # When: Walk the steps and complete
        for status in (
            JobStatus.EXTRACTING,
            JobStatus.VALIDATING,
            JobStatus.GATING,
            JobStatus.REPAIRING,
            JobStatus.FINALIZING,
        ):
            job.transition(status)
            progress.append(job.progress)
        job.complete("schedule-1")

        # Then: Monotonic progress, completed snapshot
        assert progress == sorted(progress)
        snapshot = job.snapshot()
        assert snapshot["status"] == "completed"
        assert snapshot["progress"] == 100
        assert snapshot["resultId"] == "schedule-1"
        assert "error" not in snapshot

    def test_failure_records_step(self) -> None:
        """TC-N-03: The step that failed is recorded."""
        # Given: A job in validation
        job = PipelineJob(job_id="job_1")
        job.transition(JobStatus.VALIDATING)

        # When: Fail
        job.fail("boom")

        # Then: Failed at validating
        snapshot = job.snapshot()
        assert snapshot["status"] == "failed"
        assert snapshot["error"] == "boom"
        assert snapshot["failedStep"] == "validating"

    def test_cancelled(self) -> None:
        """Cancellation is a distinct terminal status."""
        job = PipelineJob(job_id="job_1")
        job.transition(JobStatus.GATING)
        job.fail("cancelled", cancelled=True)
        assert job.status == JobStatus.CANCELLED
        assert job.failed_step == "gating"

    def test_repairing_snapshot(self) -> None:
        """TC-N-04: The current attempt is visible while repairing."""
        # Given: A job on its second repair attempt
        job = PipelineJob(job_id="job_1")
        job.repair_attempt = 2
        job.transition(JobStatus.REPAIRING, repair_progress(2, 3))

        # When/Then: Snapshot includes it
        snapshot = job.snapshot()
        assert snapshot["repairAttempt"] == 2
        assert snapshot["progress"] == 83

    def test_no_transition_after_terminal(self) -> None:
        """TC-A-01: Terminal jobs cannot move."""
        job = PipelineJob(job_id="job_1")
        job.complete("schedule-1")
        with pytest.raises(RuntimeError, match="already completed"):
            job.transition(JobStatus.GATING)

    @pytest.mark.parametrize(
        "attempt,max_attempts,expected",
        [(1, 3, 77), (3, 3, 90), (5, 3, 90), (1, 0, 70)],
    )
    def test_repair_progress(self, attempt, max_attempts, expected) -> None:
        """TC-N-05: Repair progress spans 70 to 90."""
        assert repair_progress(attempt, max_attempts) == expected


class TestJobRegistry:
    """Tests for JobRegistry."""

    def test_report_discards_terminal(self) -> None:
        """TC-A-02: A terminal job is reported once."""
        # Given: A completed job
        registry = JobRegistry()
        job = registry.create("job_1")
        job.complete("schedule-1")

        # When: Report
        snapshot = registry.report("job_1")

        # Then: Reported, then gone
        assert snapshot["status"] == "completed"
        assert len(registry) == 0
        with pytest.raises(JobNotFoundError):
            registry.report("job_1")

    def test_report_keeps_running(self) -> None:
        """Running jobs stay registered across polls."""
        registry = JobRegistry()
        registry.create("job_1").transition(JobStatus.VALIDATING)
        registry.report("job_1")
        assert registry.report("job_1")["status"] == "validating"

    def test_cancel(self) -> None:
        """TC-A-03: Only running jobs accept cancellation."""
        # Given: One running and one finished job
        registry = JobRegistry()
        running = registry.create("job_1")
        registry.create("job_2").complete("schedule-2")

        # When/Then: Request recorded only for the running job
        assert registry.request_cancel("job_1") is True
        assert running.cancel_requested
        assert registry.request_cancel("job_2") is False

    def test_duplicate_id(self) -> None:
        """TC-A-04: Registered ids are unique."""
        registry = JobRegistry()
        registry.create("job_1")
        with pytest.raises(ValueError, match="already exists"):
            registry.create("job_1")

    def test_unknown_job(self) -> None:
        """TC-A-05: Unknown ids raise JobNotFoundError."""
        with pytest.raises(JobNotFoundError) as exc_info:
            JobRegistry().get("job_missing")
        assert exc_info.value.code == ErrorCode.JOB_NOT_FOUND

    def test_generated_ids(self) -> None:
        registry = JobRegistry()
        job = registry.create()
        assert job.job_id.startswith("job_")
        assert generate_job_id() != generate_job_id()
