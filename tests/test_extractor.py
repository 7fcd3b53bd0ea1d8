"""
Tests for claim extraction.

Test Perspectives Table:
| Case ID    | Input / Precondition                          | Perspective              | Expected Result                              | Notes          |
|------------|-----------------------------------------------|--------------------------|----------------------------------------------|----------------|
| TC-N-01    | Task with four populated fields               | Normal                   | One claim per field, deterministic ids       | -              |
| TC-N-02    | Same task extracted twice                     | Normal - determinism     | Identical ids and values                     | -              |
| TC-N-03    | Cited explicit field                          | Normal                   | Citation and origin copied                   | -              |
| TC-N-04    | Regulatory requirement present                | Normal                   | Requirement claim with boolean value         | -              |
| TC-N-05    | Field subject override                        | Normal                   | Override used as subject key                 | -              |
| TC-A-01    | Task without sourced fields                   | Boundary - empty         | No claims                                    | -              |
| TC-A-02    | Empty dependency list                         | Boundary - empty         | No dependency claim                          | -              |
| TC-A-03    | Field without confidence                      | Boundary - default       | Confidence 0.5                               | -              |
| TC-A-04    | Field confidence 1.4                          | Boundary - out of range  | Base kept, confidence clamped to 1.0         | -              |
| TC-K-01    | Tasks with and without ids                    | Normal                   | Own id kept, task-<n> assigned               | -              |
| TC-K-02    | Generated key collides with existing id       | Boundary - collision     | Suffixed key                                 | -              |
| TC-S-01    | Mixed case and punctuation                    | Normal                   | Lowercase, punctuation stripped              | -              |
"""

import pytest

from claimcheck.claims import (
    ClaimExtractor,
    ClaimType,
    assign_task_keys,
    make_claim_id,
    normalize_subject,
)
from claimcheck.schemas import Origin, Task

pytestmark = pytest.mark.unit


class TestClaimExtractor:
    """Tests for ClaimExtractor.extract."""

    def test_one_claim_per_populated_field(self, make_task, sourced) -> None:
        """TC-N-01: Every populated field yields exactly one claim."""
        # Given: A task with duration, start date, dependencies and resource
        task = Task.model_validate(
            make_task(
                "t1",
                "Site activation",
                duration=sourced(5, unit="days"),
                startDate=sourced("2024-03-01"),
                dependencies=["t0"],
                resource=sourced("QA team"),
            )
        )

        # When: Extract claims
        claims = ClaimExtractor().extract(task)

        # Then: Four claims with field-derived ids and types
        assert [c.claim_id for c in claims] == [
            "claim_t1_duration",
            "claim_t1_startDate",
            "claim_t1_dependencies",
            "claim_t1_resource",
        ]
        assert [c.claim_type for c in claims] == [
            ClaimType.DURATION,
            ClaimType.START_DATE,
            ClaimType.DEPENDENCY,
            ClaimType.RESOURCE,
        ]
        assert all(c.task_id == "t1" for c in claims)

    def test_extraction_is_deterministic(self, make_task, sourced) -> None:
        """TC-N-02: Re-extraction gives the same claims."""
        # Given: A task
        task = Task.model_validate(make_task("t1", "Review", duration=sourced(3)))
        extractor = ClaimExtractor()

        # When: Extract twice
        first = extractor.extract(task)
        second = extractor.extract(task)

        # Then: Same ids and values
        assert [c.claim_id for c in first] == [c.claim_id for c in second]
        assert [c.value for c in first] == [c.value for c in second]

    def test_citation_and_origin_copied(self, make_task, cited_duration) -> None:
        """TC-N-03: Cited explicit field produces a cited explicit claim."""
        # Given: A task with a cited duration
        task = Task.model_validate(make_task("t1", "Vendor onboarding", duration=cited_duration()))

        # When: Extract
        (claim,) = ClaimExtractor().extract(task)

        # Then: Citation and origin are carried over
        assert claim.is_cited
        assert claim.citation.exact_quote == "10 days"
        assert claim.origin == Origin.EXPLICIT
        assert claim.unit == "days"

    def test_regulatory_requirement_claim(self, make_task) -> None:
        """TC-N-04: A regulatory requirement becomes a requirement claim."""
        # Given: A task requiring FDA approval
        task = Task.model_validate(
            make_task(
                "t1",
                "Submission",
                regulatoryRequirement={"isRequired": True, "regulation": "FDA"},
            )
        )

        # When: Extract
        (claim,) = ClaimExtractor().extract(task)

        # Then: Requirement claim asserting True
        assert claim.claim_type == ClaimType.REQUIREMENT
        assert claim.value is True
        assert claim.claim_id == "claim_t1_regulatoryRequirement"
        assert "FDA" in claim.text

    def test_subject_override(self, make_task, sourced) -> None:
        """TC-N-05: A field subject overrides the task-name subject."""
        # Given: A field with an explicit subject
        task = Task.model_validate(
            make_task("t1", "Kickoff", duration=sourced(2, subject="Regulatory Review"))
        )

        # When: Extract
        (claim,) = ClaimExtractor().extract(task)

        # Then: The override (normalized) is the subject key
        assert claim.subject == "regulatory review"
        assert claim.group_key == (ClaimType.DURATION, "regulatory review")

    def test_task_without_fields(self, make_task) -> None:
        """TC-A-01: No sourced fields means no claims."""
        # Given: A bare task
        task = Task.model_validate(make_task("t1", "Planning"))

        # When/Then: Nothing extracted
        assert ClaimExtractor().extract(task) == []

    def test_empty_dependency_list_skipped(self, make_task) -> None:
        """TC-A-02: An empty dependency list is not a populated field."""
        # Given: Dependencies = []
        task = Task.model_validate(make_task("t1", "Planning", dependencies=[]))

        # When/Then: No dependency claim
        assert ClaimExtractor().extract(task) == []

    def test_default_confidence(self, make_task, sourced) -> None:
        """TC-A-03: Missing field confidence defaults to 0.5."""
        # Given: A field without confidence
        task = Task.model_validate(
            make_task("t1", "Planning", resource=sourced("PMO", confidence=None))
        )

        # When: Extract
        (claim,) = ClaimExtractor().extract(task)

        # Then: 0.5
        assert claim.confidence == 0.5
        assert claim.base_confidence == 0.5

    def test_out_of_range_confidence_clamped(self, make_task, sourced) -> None:
        """TC-A-04: Confidence above 1 is clamped on the claim."""
        # Given: Field confidence 1.4
        task = Task.model_validate(
            make_task("t1", "Planning", resource=sourced("PMO", confidence=1.4))
        )

        # When: Extract
        (claim,) = ClaimExtractor().extract(task)

        # Then: Claim confidence in range, raw value kept as base
        assert claim.confidence == 1.0
        assert claim.base_confidence == 1.4


class TestTaskKeys:
    """Tests for assign_task_keys and make_claim_id."""

    def test_missing_ids_get_positional_keys(self, make_task) -> None:
        """TC-K-01: Own ids are kept, missing ids become task-<n>."""
        # Given: Tasks with and without ids
        tasks = [
            Task.model_validate(make_task("", "A")),
            Task.model_validate(make_task("t2", "B")),
            Task.model_validate(make_task("", "C")),
        ]

        # When: Assign keys
        keys = assign_task_keys(tasks)

        # Then: Positional keys fill the gaps
        assert keys == ["task-1", "t2", "task-3"]

    def test_collision_with_existing_id(self, make_task) -> None:
        """TC-K-02: A generated key never collides with a real id."""
        # Given: The second task already uses "task-1"
        tasks = [
            Task.model_validate(make_task("", "A")),
            Task.model_validate(make_task("task-1", "B")),
        ]

        # When: Assign keys
        keys = assign_task_keys(tasks)

        # Then: The first key is suffixed
        assert keys == ["task-1-2", "task-1"]
        assert len(set(keys)) == 2

    def test_claim_id_format(self) -> None:
        """Claim ids are claim_<task>_<field>."""
        assert make_claim_id("t9", "startDate") == "claim_t9_startDate"


class TestNormalizeSubject:
    """Tests for normalize_subject."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("Regulatory Review", "regulatory review"),
            ("  regulatory   review. ", "regulatory review"),
            ("QA/Validation", "qa validation"),
        ],
    )
    def test_normalization(self, text: str, expected: str) -> None:
        """TC-S-01: Case, punctuation and whitespace are normalized."""
        assert normalize_subject(text) == expected
