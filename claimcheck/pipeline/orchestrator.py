"""
Pipeline orchestrator.

Drives one job end to end:

    queued -> extracting -> validating -> gating -> repairing (0..N)
           -> finalizing -> completed | failed | cancelled

Every job gets its own ClaimLedger and ValidationService; nothing mutable
is shared between jobs except the job registry. Settings are fixed for
the orchestrator's lifetime; gates and repair strategies are snapshotted
when a job starts.

External calls (task generation, document fetching) are the only
suspension points besides step boundaries. Cancellation is cooperative:
it is checked between steps and after an external call returns, never in
the middle of one. The per-job wall-clock budget is checked before each
repair attempt; running out stops repair and finalizes the best state
reached with repairLog.finalStatus = "timeout".
"""

import asyncio
import time
from collections import OrderedDict
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from claimcheck.claims.ledger import ClaimLedger
from claimcheck.errors import (
    ClaimCheckError,
    GenerationError,
    InputValidationError,
    JobCancelledError,
    SchemaViolationError,
    generate_error_id,
)
from claimcheck.pipeline.collaborators import DocumentSource, TaskGenerator
from claimcheck.pipeline.jobs import JobRegistry, JobStatus, PipelineJob, repair_progress
from claimcheck.quality.gates import QualityGateManager, QualityGateReport
from claimcheck.quality.repair import (
    DEFAULT_PROJECT_NAME,
    RepairContext,
    RepairLog,
    SemanticRepairEngine,
)
from claimcheck.schemas import (
    Schedule,
    SourceDocument,
    Task,
    build_metadata,
    contract_violations,
    new_schedule_id,
)
from claimcheck.utils.config import Settings, get_settings
from claimcheck.utils.logging import LogContext, bind_context, get_logger
from claimcheck.verification.citation import index_documents
from claimcheck.verification.service import ValidationService

logger = get_logger(__name__)


@dataclass
class PipelineOptions:
    """Per-call options of generate_validated."""

    project_name: str | None = None
    job_id: str | None = None


@dataclass
class PipelineResult:
    """Validated schedule with its gate report and repair log."""

    job_id: str
    schedule: Schedule
    gate_report: QualityGateReport
    repair_log: RepairLog | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobId": self.job_id,
            "schedule": self.schedule.model_dump(mode="json", by_alias=True),
            "qualityGates": self.gate_report.to_dict(),
            "repairLog": self.repair_log.to_dict() if self.repair_log else None,
        }


@dataclass
class _JobRun:
    """Bookkeeping of one running job."""

    job: PipelineJob
    deadline: float
    now: datetime
    gates: QualityGateManager
    repair: SemanticRepairEngine


def _error_list(error: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
        for err in error.errors()
    ]


def parse_documents(raw: Sequence[SourceDocument | dict[str, Any]]) -> list[SourceDocument]:
    """
    Validate source documents.

    Raises:
        InputValidationError: Malformed document or duplicate document name.
    """
    try:
        documents = [
            d.model_copy() if isinstance(d, SourceDocument) else SourceDocument.model_validate(d)
            for d in raw
        ]
    except ValidationError as e:
        raise InputValidationError(
            "Invalid source documents", errors=_error_list(e), field="sourceDocuments"
        ) from e

    seen: set[str] = set()
    for doc in documents:
        if doc.name in seen:
            raise InputValidationError(
                f"Duplicate source document name: {doc.name}", field="sourceDocuments"
            )
        seen.add(doc.name)
    return documents


def parse_tasks(raw: Sequence[Task | dict[str, Any]]) -> list[Task]:
    """
    Validate raw tasks. Task objects are deep-copied, never mutated.

    Raises:
        InputValidationError: Empty list, malformed task or duplicate task id.
    """
    if not raw:
        raise InputValidationError("No tasks to validate", field="tasks")
    try:
        tasks = [
            t.model_copy(deep=True) if isinstance(t, Task) else Task.model_validate(t)
            for t in raw
        ]
    except ValidationError as e:
        raise InputValidationError("Invalid tasks", errors=_error_list(e), field="tasks") from e

    seen: set[str] = set()
    for task in tasks:
        if not task.id:
            continue
        if task.id in seen:
            raise InputValidationError(f"Duplicate task id: {task.id}", field="tasks")
        seen.add(task.id)
    return tasks


class Orchestrator:
    """
    Runs claim validation jobs.

    Example:
        orchestrator = Orchestrator()
        result = await orchestrator.generate_validated(tasks, documents)
        result.repair_log.final_status  # RepairStatus.NOT_NEEDED, ...
    """

    # Results of submitted jobs not yet fetched; the oldest is dropped first
    max_retained_results = 64

    def __init__(
        self,
        settings: Settings | None = None,
        generator: TaskGenerator | None = None,
        document_source: DocumentSource | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] | None = None,
    ):
        """
        Args:
            settings: Fixed configuration for this orchestrator's lifetime.
            generator: Upstream task generator, used when no raw tasks are given.
            document_source: Document supplier, used when no documents are given.
            clock: Monotonic clock (seconds) for the per-job budget.
            now: Wall-clock time source for timestamps and citation age.
        """
        self.settings = settings or get_settings()
        self.gates = QualityGateManager(self.settings.validation)
        self.repair = SemanticRepairEngine()
        self._generator = generator
        self._document_source = document_source
        self._clock = clock
        self._now = now or (lambda: datetime.now(UTC))
        self._jobs = JobRegistry()
        self._background: set[asyncio.Task[None]] = set()
        self._results: OrderedDict[str, PipelineResult] = OrderedDict()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def generate_validated(
        self,
        raw_tasks: Sequence[Task | dict[str, Any]] | None = None,
        source_documents: Sequence[SourceDocument | dict[str, Any]] | None = None,
        options: PipelineOptions | None = None,
    ) -> PipelineResult:
        """
        Run the full pipeline.

        Args:
            raw_tasks: Tasks to validate. When None, the generator is called.
            source_documents: Document corpus. When None, the document
                source is asked for it.
            options: Project name and job id.

        Returns:
            Validated schedule, final gate report and repair log.

        Raises:
            InputValidationError: Malformed input (job fails at once).
            GenerationError: Upstream generation failed.
            SchemaViolationError: Finalized schedule breaks the contract.
            JobCancelledError: Cancellation was requested.
        """
        options = options or PipelineOptions()
        job = self._jobs.create(options.job_id)
        return await self._run(job, self._generate, raw_tasks, source_documents, options)

    async def validate_existing(
        self,
        schedule: Schedule | dict[str, Any],
        source_documents: Sequence[SourceDocument | dict[str, Any]],
    ) -> PipelineResult:
        """
        Read-only validation pass: extraction, validation and gating.

        No repair and no generator call. The given schedule is not
        modified; the result carries a validated copy. Running this twice
        on the same inputs yields the same gate report.
        """
        job = self._jobs.create()
        return await self._run(job, self._validate_existing, schedule, source_documents)

    def submit(
        self,
        raw_tasks: Sequence[Task | dict[str, Any]] | None = None,
        source_documents: Sequence[SourceDocument | dict[str, Any]] | None = None,
        options: PipelineOptions | None = None,
    ) -> str:
        """Start generate_validated in the background and return the job id.

        Poll get_job_status; fetch the schedule with get_result(resultId).
        """
        options = options or PipelineOptions()
        job = self._jobs.create(options.job_id)
        task = asyncio.create_task(
            self._run_background(job, raw_tasks, source_documents, options)
        )
        self._background.add(task)

        def _done(finished: asyncio.Task[None]) -> None:
            self._background.discard(finished)
            # Cancelled before its first step, so _run never saw it
            if finished.cancelled() and not job.is_terminal:
                job.fail(f"Job {job.job_id} was cancelled", cancelled=True)

        task.add_done_callback(_done)
        return job.job_id

    def get_job_status(self, job_id: str) -> dict[str, Any]:
        """
        Status snapshot ``{status, progress, resultId?, error?, failedStep?}``.

        A finished submitted job is discarded once its final status is
        returned. Awaited jobs are visible only while they run: their
        result (or raised error) is their final report.

        Raises:
            JobNotFoundError: Unknown (or already reported) job.
        """
        return self._jobs.report(job_id)

    def cancel(self, job_id: str) -> bool:
        """Request cancellation; takes effect at the job's next step boundary."""
        return self._jobs.request_cancel(job_id)

    def get_result(self, result_id: str) -> PipelineResult | None:
        """Hand over (and forget) the result of a submitted job."""
        return self._results.pop(result_id, None)

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def _run(
        self,
        job: PipelineJob,
        body: Callable[..., Any],
        *args: Any,
        retain: bool = False,
    ) -> PipelineResult:
        """Run one job body and record its outcome on the job.

        Gates and repair strategies are snapshotted here, so changes made
        to the orchestrator while the job runs do not reach it.

        Args:
            retain: Keep the finished job until get_job_status reports it
                (background jobs). Awaited jobs are discarded on return,
                since the result or the raised error is their report.
        """
        run = _JobRun(
            job=job,
            deadline=self._clock() + self.settings.pipeline.job_timeout_seconds,
            now=self._now(),
            gates=self.gates.snapshot(),
            repair=self.repair.snapshot(),
        )
        with LogContext(job_id=job.job_id, step=job.status.value):
            logger.info("Job started")
            try:
                result = await body(run, *args)
            except JobCancelledError as e:
                self._record_failure(job, e, cancelled=True)
                logger.warning("Job cancelled", failed_step=job.failed_step)
                raise
            except asyncio.CancelledError:
                job.fail(f"Job {job.job_id} was cancelled", cancelled=True)
                logger.warning("Job task cancelled", failed_step=job.failed_step)
                raise
            except ClaimCheckError as e:
                self._record_failure(job, e)
                logger.error(
                    "Job failed",
                    error_code=e.code.value,
                    error=e.message,
                    failed_step=job.failed_step,
                )
                raise
            except Exception as e:
                error_id = generate_error_id()
                job.fail(f"Internal error ({error_id}): {e}")
                logger.error(
                    "Job failed with unexpected error",
                    error_id=error_id,
                    failed_step=job.failed_step,
                    exc_info=True,
                )
                raise
            finally:
                if not retain:
                    self._jobs.discard(job.job_id)

            job.complete(result.schedule.id)
            logger.info(
                "Job completed",
                result_id=result.schedule.id,
                gates_passed=result.gate_report.passed,
                repair_status=result.repair_log.final_status.value if result.repair_log else None,
            )
            return result

    @staticmethod
    def _record_failure(job: PipelineJob, error: ClaimCheckError, *, cancelled: bool = False) -> None:
        """Fail the job; the raised error carries the job id and failed step."""
        job.fail(error.message, cancelled=cancelled)
        error.details.setdefault("job_id", job.job_id)
        error.details["failed_step"] = job.failed_step

    async def _run_background(self, job: PipelineJob, *args: Any) -> None:
        try:
            result = await self._run(job, self._generate, *args, retain=True)
        except Exception as e:
            # Already recorded on the job and logged by _run
            logger.debug("Background job ended with error", job_id=job.job_id, error=str(e))
            return
        # Stored before yielding so a caller that sees "completed" can fetch it
        self._results[result.schedule.id] = result
        while len(self._results) > self.max_retained_results:
            dropped, _ = self._results.popitem(last=False)
            logger.warning("Unfetched result dropped", result_id=dropped)

    async def _checkpoint(self, run: _JobRun, status: JobStatus, progress: int | None = None) -> None:
        """Step boundary: honour cancellation, then advance the job."""
        self._raise_if_cancelled(run)
        run.job.transition(status, progress)
        bind_context(step=status.value)
        logger.info("Job step", status=status.value, progress=run.job.progress)
        # Step boundaries are where other jobs and cancel requests get a turn
        await asyncio.sleep(0)
        self._raise_if_cancelled(run)

    def _raise_if_cancelled(self, run: _JobRun) -> None:
        if run.job.cancel_requested:
            raise JobCancelledError(run.job.job_id, step=run.job.status.value)

    def _budget_exhausted(self, run: _JobRun) -> bool:
        return self._clock() >= run.deadline

    # ------------------------------------------------------------------
    # Pipeline bodies
    # ------------------------------------------------------------------

    async def _generate(
        self,
        run: _JobRun,
        raw_tasks: Sequence[Task | dict[str, Any]] | None,
        source_documents: Sequence[SourceDocument | dict[str, Any]] | None,
        options: PipelineOptions,
    ) -> PipelineResult:
        await self._checkpoint(run, JobStatus.EXTRACTING)
        documents = await self._resolve_documents(run, source_documents)
        tasks = await self._resolve_tasks(run, raw_tasks, documents, options)

        ledger = ClaimLedger(job_id=run.job.job_id)
        service = ValidationService(index_documents(documents), self.settings, ledger, now=run.now)
        service.populate(tasks)

        await self._checkpoint(run, JobStatus.VALIDATING)
        self._validate(service, tasks)

        schedule = Schedule(
            id=new_schedule_id(),
            project_name=options.project_name or DEFAULT_PROJECT_NAME,
            tasks=tasks,
            metadata=build_metadata(tasks, run.now),
        )

        await self._checkpoint(run, JobStatus.GATING)
        report = run.gates.evaluate(schedule, ledger)

        repair_log, timed_out = await self._repair_loop(run, schedule, ledger, service, report)

        await self._checkpoint(run, JobStatus.FINALIZING)
        final_report = self._finalize(run, schedule, ledger, service, repair_log, timed_out)
        return PipelineResult(
            job_id=run.job.job_id,
            schedule=schedule,
            gate_report=final_report,
            repair_log=repair_log,
        )

    async def _validate_existing(
        self,
        run: _JobRun,
        schedule: Schedule | dict[str, Any],
        source_documents: Sequence[SourceDocument | dict[str, Any]],
    ) -> PipelineResult:
        await self._checkpoint(run, JobStatus.EXTRACTING)
        documents = parse_documents(source_documents)
        try:
            working = (
                schedule.model_copy(deep=True)
                if isinstance(schedule, Schedule)
                else Schedule.model_validate(schedule)
            )
        except ValidationError as e:
            raise InputValidationError(
                "Invalid schedule", errors=_error_list(e), field="schedule"
            ) from e
        parse_tasks(working.tasks)

        ledger = ClaimLedger(job_id=run.job.job_id)
        service = ValidationService(index_documents(documents), self.settings, ledger, now=run.now)
        service.populate(working.tasks)

        await self._checkpoint(run, JobStatus.VALIDATING)
        self._validate(service, working.tasks)

        await self._checkpoint(run, JobStatus.GATING)
        report = run.gates.evaluate(working, ledger)
        working.validation_metadata = service.schedule_summary(working.tasks, report.passed_names)
        working.final_quality_gates = report.to_dict()

        return PipelineResult(job_id=run.job.job_id, schedule=working, gate_report=report)

    def _validate(self, service: ValidationService, tasks: list[Task]) -> None:
        service.detect_contradictions()
        for task, key in zip(tasks, service.task_keys):
            service.validate_task(task, key)

    async def _resolve_documents(
        self,
        run: _JobRun,
        source_documents: Sequence[SourceDocument | dict[str, Any]] | None,
    ) -> list[SourceDocument]:
        if source_documents is not None:
            return parse_documents(source_documents)
        if self._document_source is None:
            raise InputValidationError(
                "No source documents given and no document source configured",
                field="sourceDocuments",
            )
        fetched = await self._document_source.fetch_documents()
        # A result arriving after cancellation is discarded
        self._raise_if_cancelled(run)
        return parse_documents(fetched)

    async def _resolve_tasks(
        self,
        run: _JobRun,
        raw_tasks: Sequence[Task | dict[str, Any]] | None,
        documents: list[SourceDocument],
        options: PipelineOptions,
    ) -> list[Task]:
        if raw_tasks is not None:
            return parse_tasks(raw_tasks)
        if self._generator is None:
            raise InputValidationError(
                "No tasks given and no task generator configured", field="tasks"
            )
        generated = await self._generator.generate(documents, project_name=options.project_name)
        self._raise_if_cancelled(run)
        if not generated:
            raise GenerationError("Generator returned no tasks")
        return parse_tasks(generated)

    async def _repair_loop(
        self,
        run: _JobRun,
        schedule: Schedule,
        ledger: ClaimLedger,
        service: ValidationService,
        report: QualityGateReport,
    ) -> tuple[RepairLog, bool]:
        """Bounded repair loop.

        The first attempt also targets warnings; later attempts run only
        while blocking failures remain. At most max_repair_attempts attempts
        are made whether or not the gates converge.
        """
        repair_log = RepairLog()
        max_attempts = self.settings.repair.max_repair_attempts

        while repair_log.attempts < max_attempts:
            strategies = run.repair.plan(report, include_warnings=repair_log.attempts == 0)
            if not strategies:
                break
            if self._budget_exhausted(run):
                logger.warning(
                    "Job time budget exhausted, stopping repair",
                    attempts=repair_log.attempts,
                    remaining_failures=report.failure_names,
                )
                return repair_log, True

            attempt = repair_log.attempts + 1
            run.job.repair_attempt = attempt
            await self._checkpoint(
                run, JobStatus.REPAIRING, progress=repair_progress(attempt, max_attempts)
            )

            ctx = RepairContext(
                schedule=schedule,
                ledger=ledger,
                settings=self.settings,
                task_keys=service.task_keys,
                now=run.now,
            )
            entries = run.repair.apply(attempt, ctx, strategies)
            repair_log.attempts = attempt
            report = run.gates.evaluate(schedule, ledger)
            run.repair.settle(entries, report)
            repair_log.entries.extend(entries)

        return repair_log, False

    def _finalize(
        self,
        run: _JobRun,
        schedule: Schedule,
        ledger: ClaimLedger,
        service: ValidationService,
        repair_log: RepairLog,
        timed_out: bool,
    ) -> QualityGateReport:
        """
        Write final metadata onto the schedule and check the contract.

        Raises:
            SchemaViolationError: The schedule still breaks the contract.
        """
        service.refresh(schedule.tasks)
        created_at = schedule.metadata.created_at if schedule.metadata else run.now
        schedule.metadata = build_metadata(schedule.tasks, created_at)

        final_report = run.gates.evaluate(schedule, ledger)
        repair_log.finish(final_report, timed_out=timed_out)

        schedule.validation_metadata = service.schedule_summary(
            schedule.tasks, final_report.passed_names
        )
        schedule.final_quality_gates = final_report.to_dict()
        schedule.repair_log = repair_log.to_dict()

        violations = contract_violations(schedule)
        if violations:
            raise SchemaViolationError(
                f"Schedule violates the output contract ({len(violations)} errors)",
                errors=violations,
            )
        return final_report
