"""
Validation service.

Coordinates extraction, citation validation, contradiction detection,
provenance auditing and calibration for one job, against that job's ledger.

Validation is two-phase:
1. populate: extract claims from every task into the ledger
2. detect contradictions over the complete ledger, then validate each task
   in order (citations -> contradictions -> provenance -> calibration ->
   ValidationMetadata)

A service instance belongs to one job. It is created by the orchestrator
with that job's ledger and dropped with it.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from claimcheck.claims.extractor import ClaimExtractor, assign_task_keys
from claimcheck.claims.ledger import ClaimLedger
from claimcheck.claims.models import Claim, Contradiction, Severity
from claimcheck.schemas import ScheduleValidationSummary, SourceDocument, Task, ValidationMetadata
from claimcheck.utils.config import Settings
from claimcheck.utils.logging import get_logger
from claimcheck.verification.calibration import ConfidenceCalibrator, mean_confidence
from claimcheck.verification.citation import CitationCheck, CitationValidator, citation_coverage
from claimcheck.verification.contradiction import ContradictionDetector
from claimcheck.verification.provenance import (
    ProvenanceAuditor,
    ProvenanceResult,
    task_provenance_score,
)

logger = get_logger(__name__)

# Task-level checks reported in ValidationMetadata.gatesPassed
CHECK_CITATION_COVERAGE = "CITATION_COVERAGE"
CHECK_CONTRADICTION_SEVERITY = "CONTRADICTION_SEVERITY"
CHECK_CONFIDENCE_MINIMUM = "CONFIDENCE_MINIMUM"
CHECK_PROVENANCE = "PROVENANCE"


class ValidationService:
    """Per-job validation coordinator."""

    def __init__(
        self,
        documents: Mapping[str, SourceDocument],
        settings: Settings,
        ledger: ClaimLedger,
        now: datetime | None = None,
    ):
        self.ledger = ledger
        self._settings = settings
        self._extractor = ClaimExtractor()
        self._citations = CitationValidator(documents)
        self._detector = ContradictionDetector(settings.contradiction)
        self._auditor = ProvenanceAuditor(documents, settings.provenance, now=now)
        self._calibrator = ConfidenceCalibrator(
            settings.calibration, settings.provenance.threshold
        )
        self._task_keys: list[str] = []
        self._checks: dict[str, CitationCheck] = {}
        self._provenance: dict[str, ProvenanceResult] = {}
        self._coverage: dict[str, float] = {}
        self._task_provenance: dict[str, float] = {}

    @property
    def task_keys(self) -> list[str]:
        """Task keys assigned at populate time, in task order."""
        return list(self._task_keys)

    # ------------------------------------------------------------------
    # Phase 1
    # ------------------------------------------------------------------

    def populate(self, tasks: list[Task]) -> int:
        """Extract every task's claims into the ledger.

        Returns:
            Number of claims added.
        """
        if self._task_keys:
            raise RuntimeError("Ledger already populated for this job")
        self._task_keys = assign_task_keys(tasks)
        before = len(self.ledger)
        for task, key in zip(tasks, self._task_keys):
            self.ledger.add_claims(self._extractor.extract(task, task_key=key))
        added = len(self.ledger) - before
        logger.info("Ledger populated", tasks=len(tasks), claims=added)
        return added

    # ------------------------------------------------------------------
    # Phase 2
    # ------------------------------------------------------------------

    def detect_contradictions(self) -> list[Contradiction]:
        return self._detector.detect(self.ledger)

    def validate_task(self, task: Task, task_key: str) -> ValidationMetadata:
        """Validate one task against the populated ledger."""
        claims = self.ledger.get_by_task(task_key)

        # Citations
        for claim in claims:
            check = self._citations.validate(claim)
            self._checks[claim.claim_id] = check
            self.ledger.record_citation_check(claim.claim_id, check.valid)
        coverage = citation_coverage(claims, self._checks)

        # Provenance
        results = [self._auditor.audit(c, self._checks[c.claim_id]) for c in claims]
        for result in results:
            self._provenance[result.claim_id] = result
        provenance = task_provenance_score(results)

        # Calibration
        for claim in claims:
            self._calibrator.calibrate(
                self.ledger,
                claim,
                task_coverage=coverage,
                provenance_score=self._provenance[claim.claim_id].score,
            )

        self._coverage[task_key] = coverage
        self._task_provenance[task_key] = provenance
        self._apply_task_confidence(task, claims)

        metadata = self._build_metadata(task, task_key, claims)
        task.validation_metadata = metadata
        logger.debug(
            "Task validated",
            task_id=task_key,
            claims=len(claims),
            citation_coverage=round(coverage, 4),
            provenance_score=round(provenance, 4),
        )
        return metadata

    def validate_all(self, tasks: list[Task]) -> list[ValidationMetadata]:
        """Run both phases over the whole schedule."""
        self.populate(tasks)
        self.detect_contradictions()
        return [self.validate_task(task, key) for task, key in zip(tasks, self._task_keys)]

    # ------------------------------------------------------------------
    # After repair
    # ------------------------------------------------------------------

    def refresh(self, tasks: list[Task]) -> None:
        """Rewrite task metadata from the current ledger state.

        Repair changes claim confidences and contradiction resolutions in
        the ledger; this copies them back onto the tasks. Coverage and
        provenance scores are kept from validation.
        """
        for task, key in zip(tasks, self._task_keys):
            claims = self.ledger.get_by_task(key)
            self._apply_task_confidence(task, claims)
            task.validation_metadata = self._build_metadata(task, key, claims)

    def schedule_summary(
        self, tasks: list[Task], gates_passed: list[str]
    ) -> ScheduleValidationSummary:
        """Schedule-level validation summary."""
        keys = self._task_keys
        coverage = [self._coverage.get(k, 0.0) for k in keys]
        provenance = [self._task_provenance.get(k, 0.0) for k in keys]
        return ScheduleValidationSummary(
            citation_coverage=sum(coverage) / len(coverage) if coverage else 0.0,
            provenance_score=sum(provenance) / len(provenance) if provenance else 0.0,
            contradictions=[c.to_dict() for c in self.ledger.get_contradictions()],
            ledger_summary=self.ledger.summary(),
            gates_passed=gates_passed,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply_task_confidence(self, task: Task, claims: list[Claim]) -> None:
        mean = mean_confidence(claims)
        if mean is not None:
            task.confidence = mean

    def _build_metadata(self, task: Task, task_key: str, claims: list[Claim]) -> ValidationMetadata:
        coverage = self._coverage.get(task_key, 0.0)
        provenance = self._task_provenance.get(task_key, 0.0)
        contradictions = self.ledger.contradictions_for_task(task_key)
        return ValidationMetadata(
            claims=[self._snapshot(c) for c in claims],
            citation_coverage=coverage,
            contradictions=[c.to_dict() for c in contradictions],
            provenance_score=provenance,
            gates_passed=self._task_checks(task, coverage, provenance, contradictions),
        )

    def _snapshot(self, claim: Claim) -> dict[str, Any]:
        snapshot = claim.to_dict()
        snapshot["citationValid"] = self.ledger.has_valid_citation(claim.claim_id)
        provenance = self._provenance.get(claim.claim_id)
        snapshot["provenance"] = provenance.to_dict() if provenance else None
        return snapshot

    def _task_checks(
        self,
        task: Task,
        coverage: float,
        provenance: float,
        contradictions: list[Contradiction],
    ) -> list[str]:
        validation = self._settings.validation
        passed: list[str] = []
        if coverage >= validation.citation_coverage_threshold:
            passed.append(CHECK_CITATION_COVERAGE)
        if not any(c.severity == Severity.HIGH and not c.is_resolved for c in contradictions):
            passed.append(CHECK_CONTRADICTION_SEVERITY)
        if task.confidence >= validation.min_confidence_threshold:
            passed.append(CHECK_CONFIDENCE_MINIMUM)
        if provenance >= self._settings.provenance.threshold:
            passed.append(CHECK_PROVENANCE)
        return passed

    def coverage_for(self, task_key: str) -> float:
        return self._coverage.get(task_key, 0.0)

    def citation_check(self, claim_id: str) -> CitationCheck | None:
        return self._checks.get(claim_id)
