"""
Tests for the per-job validation service.

Test Perspectives Table:
| Case ID    | Input / Precondition                          | Perspective              | Expected Result                              | Notes          |
|------------|-----------------------------------------------|--------------------------|----------------------------------------------|----------------|
| TC-N-01    | Cited explicit vs uncited inference duration  | Normal                   | Cross-task HIGH contradiction found          | -              |
| TC-N-02    | Same input                                    | Normal                   | Calibrated confidences per factor            | -              |
| TC-N-03    | Same input                                    | Normal                   | Metadata: coverage, snapshots, checks passed | -              |
| TC-N-04    | Contradiction resolved, then refresh          | Normal                   | CONTRADICTION_SEVERITY passes                | -              |
| TC-N-05    | schedule_summary                              | Normal                   | Mean coverage, ledger summary                | -              |
| TC-A-01    | populate called twice                         | Abnormal                 | RuntimeError                                 | -              |
| TC-A-02    | Task without sourced fields                   | Boundary - empty         | Coverage 0, task confidence unchanged        | -              |
| TC-A-03    | Tasks without ids                             | Boundary                 | Claims keyed by positional task keys         | -              |
"""

import pytest

from claimcheck.claims import ClaimLedger, Severity
from claimcheck.schemas import SourceDocument, Task
from claimcheck.verification import ValidationService, index_documents
from claimcheck.verification.citation import CitationStatus
from claimcheck.verification.service import (
    CHECK_CITATION_COVERAGE,
    CHECK_CONFIDENCE_MINIMUM,
    CHECK_CONTRADICTION_SEVERITY,
    CHECK_PROVENANCE,
)

pytestmark = pytest.mark.unit


@pytest.fixture
def service(documents, settings, now) -> ValidationService:
    corpus = index_documents(SourceDocument.model_validate(d) for d in documents)
    return ValidationService(corpus, settings, ClaimLedger(job_id="job_test"), now=now)


@pytest.fixture
def review_tasks(make_task, sourced) -> list[Task]:
    """Two tasks on one subject: a cited 15-day duration and an inferred 10-day one."""
    return [
        Task.model_validate(
            make_task("t1", "Regulatory review", duration=sourced(15, unit="days", quote="15 days"))
        ),
        Task.model_validate(
            make_task(
                "t2",
                "Regulatory review",
                origin="inference",
                duration=sourced(10, unit="days", origin="inference"),
            )
        ),
    ]


class TestValidateAll:
    """Tests for the two-phase validation pass."""

    def test_cross_task_contradiction(self, service, review_tasks) -> None:
        """TC-N-01: Contradictions span tasks once the ledger is complete."""
        # Given/When: Validate both tasks
        service.validate_all(review_tasks)

        # Then: One high numerical contradiction between the two durations
        (contradiction,) = service.ledger.get_contradictions()
        assert contradiction.severity == Severity.HIGH
        assert contradiction.claim_ids == ("claim_t1_duration", "claim_t2_duration")

    def test_calibrated_confidence(self, service, review_tasks) -> None:
        """TC-N-02: Claim and task confidence reflect every factor."""
        # Given/When: Validate
        service.validate_all(review_tasks)

        # Then: 0.8 + 0.10 - 0.20 + 0.05 and 0.8 - 0.15 - 0.20 - 0.10
        assert service.ledger.get("claim_t1_duration").confidence == pytest.approx(0.75)
        assert service.ledger.get("claim_t2_duration").confidence == pytest.approx(0.35)
        assert review_tasks[0].confidence == pytest.approx(0.75)
        assert review_tasks[1].confidence == pytest.approx(0.35)

    def test_task_metadata(self, service, review_tasks) -> None:
        """TC-N-03: ValidationMetadata records per-task results."""
        # Given/When: Validate
        service.validate_all(review_tasks)
        cited, inferred = (t.validation_metadata for t in review_tasks)

        # Then: Coverage, provenance, snapshots and passed checks
        assert cited.citation_coverage == 1.0
        assert cited.provenance_score == pytest.approx(1.0)
        assert cited.claims[0]["citationValid"] is True
        assert cited.claims[0]["calibration"]["baseConfidence"] == 0.8
        assert len(cited.contradictions) == 1
        assert cited.gates_passed == [
            CHECK_CITATION_COVERAGE,
            CHECK_CONFIDENCE_MINIMUM,
            CHECK_PROVENANCE,
        ]
        assert inferred.citation_coverage == 0.0
        assert inferred.claims[0]["provenance"]["score"] == 0.0
        assert inferred.gates_passed == []

        # Then: Citation checks are kept per claim
        assert service.citation_check("claim_t1_duration").status == CitationStatus.VALID
        assert service.citation_check("claim_t2_duration").status == CitationStatus.MISSING
        assert service.citation_check("claim_unknown") is None

    def test_refresh_after_resolution(self, service, review_tasks) -> None:
        """TC-N-04: Refresh picks up ledger changes made by repair."""
        # Given: A validated schedule with its contradiction resolved
        service.validate_all(review_tasks)
        (contradiction,) = service.ledger.get_contradictions()
        service.ledger.resolve(contradiction.contradiction_id, "claim_t1_duration")

        # When: Refresh
        service.refresh(review_tasks)

        # Then: The contradiction check now passes for the cited task
        assert CHECK_CONTRADICTION_SEVERITY in review_tasks[0].validation_metadata.gates_passed
        assert review_tasks[0].validation_metadata.contradictions[0]["resolution"] == (
            "claim_t1_duration"
        )

    def test_schedule_summary(self, service, review_tasks) -> None:
        """TC-N-05: Schedule summary averages task scores."""
        # Given: A validated schedule
        service.validate_all(review_tasks)

        # When: Summarize
        summary = service.schedule_summary(review_tasks, gates_passed=["SCHEMA_COMPLIANCE"])

        # Then: Mean coverage and ledger counts
        assert summary.citation_coverage == pytest.approx(0.5)
        assert summary.ledger_summary["totalClaims"] == 2
        assert summary.ledger_summary["unresolvedHigh"] == 1
        assert summary.gates_passed == ["SCHEMA_COMPLIANCE"]

    def test_populate_twice(self, service, review_tasks) -> None:
        """TC-A-01: A service populates its ledger once."""
        # Given: A populated service
        service.populate(review_tasks)

        # When/Then: Second populate fails
        with pytest.raises(RuntimeError, match="already populated"):
            service.populate(review_tasks)

    def test_task_without_claims(self, service, make_task) -> None:
        """TC-A-02: A bare task keeps its confidence and has zero coverage."""
        # Given: A task with no sourced fields
        task = Task.model_validate(make_task("t1", "Planning", confidence=0.6))

        # When: Validate
        (metadata,) = service.validate_all([task])

        # Then: Nothing to score
        assert metadata.citation_coverage == 0.0
        assert metadata.claims == []
        assert task.confidence == 0.6

    def test_positional_task_keys(self, service, make_task, cited_duration) -> None:
        """TC-A-03: Tasks without ids are keyed by position."""
        # Given: Two tasks with empty ids
        tasks = [
            Task.model_validate(make_task("", "Vendor onboarding", duration=cited_duration())),
            Task.model_validate(make_task("", "Kickoff")),
        ]

        # When: Validate
        service.validate_all(tasks)

        # Then: Claims use task-1
        assert service.task_keys == ["task-1", "task-2"]
        assert "claim_task-1_duration" in service.ledger
        assert service.coverage_for("task-1") == 1.0
