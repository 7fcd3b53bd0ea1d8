"""
Pydantic schemas for the schedule data contract.

These models describe what crosses the pipeline boundary:
- Raw tasks and source documents coming in from external collaborators
- The validated schedule going out to the chart renderer

Field names are snake_case in Python and camelCase on the wire
(``model_dump(by_alias=True)``).

The models are intentionally lenient about values that the schema repair
strategy can fix (empty identifiers, out-of-range confidences, missing
metadata objects). ``contract_violations()`` is the strict check used by the
SCHEMA_COMPLIANCE gate and at finalization.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Origin(str, Enum):
    """Bimodal origin of a field or claim."""

    EXPLICIT = "explicit"  # Directly sourced from a document
    INFERENCE = "inference"  # Derived by the generator model


class ContractModel(BaseModel):
    """Base model for wire-format objects (camelCase aliases)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class SourceDocument(ContractModel):
    """A source document as produced by the ingestion collaborator."""

    name: str = Field(..., min_length=1)
    content: str


class Citation(ContractModel):
    """Reference to an exact span of a source document.

    Every attribute is optional on the model so that incomplete citations
    can still be parsed and scored by the provenance auditor.
    """

    document_name: str | None = None
    exact_quote: str | None = None
    start_char: int | None = None
    end_char: int | None = None
    provider: str = "INTERNAL"
    retrieved_at: datetime | None = None


class InferenceRationale(ContractModel):
    """Why a value was inferred rather than quoted."""

    reasoning: str
    supporting_facts: list[str] = Field(default_factory=list)
    llm_provider: str | None = None
    temperature: float | None = None


class SourcedField(ContractModel):
    """A task field tagged with its own origin, confidence and citations."""

    value: Any = None
    unit: str | None = None
    confidence: float | None = None
    origin: Origin
    source_citations: list[Citation] = Field(default_factory=list)
    inference_rationale: InferenceRationale | None = None
    subject: str | None = None  # Explicit subject key override

    @property
    def citation(self) -> Citation | None:
        """Primary citation (first listed), if any."""
        return self.source_citations[0] if self.source_citations else None

    def is_populated(self) -> bool:
        if self.value is None:
            return False
        if isinstance(self.value, (list, str)) and len(self.value) == 0:
            return False
        return True


class RegulatoryRequirement(ContractModel):
    """Regulatory approval attached to a task."""

    is_required: bool
    regulation: str | None = None
    confidence: float | None = None
    origin: Origin = Origin.INFERENCE
    source_citations: list[Citation] = Field(default_factory=list)
    inference_rationale: InferenceRationale | None = None
    subject: str | None = None

    @property
    def citation(self) -> Citation | None:
        return self.source_citations[0] if self.source_citations else None


class ValidationMetadata(ContractModel):
    """Per-task validation result. Recomputed on every validation pass."""

    claims: list[dict[str, Any]] = Field(default_factory=list)
    citation_coverage: float = 0.0
    contradictions: list[dict[str, Any]] = Field(default_factory=list)
    provenance_score: float = 0.0
    gates_passed: list[str] = Field(default_factory=list)


class Task(ContractModel):
    """A schedule task with bimodal (explicit / inference) fields."""

    id: str = ""
    name: str = Field(..., min_length=1)
    origin: Origin
    confidence: float = 0.5
    duration: SourcedField | None = None
    start_date: SourcedField | None = None
    dependencies: SourcedField | None = None
    resource: SourcedField | None = None
    regulatory_requirement: RegulatoryRequirement | None = None
    validation_metadata: ValidationMetadata | None = None
    flags: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)

    @field_validator("dependencies", mode="before")
    @classmethod
    def _wrap_plain_dependencies(cls, value: Any) -> Any:
        # Generators often emit a bare id list; dependencies are stated facts.
        if isinstance(value, list):
            return {"value": value, "origin": Origin.EXPLICIT.value}
        return value

    def sourced_fields(self) -> dict[str, SourcedField]:
        """Populated sourced fields keyed by wire name."""
        fields = {
            "duration": self.duration,
            "startDate": self.start_date,
            "dependencies": self.dependencies,
            "resource": self.resource,
        }
        return {name: f for name, f in fields.items() if f is not None and f.is_populated()}

    def has_regulatory_flag(self, regulation: str | None = None) -> bool:
        if self.regulatory_requirement is not None and self.regulatory_requirement.is_required:
            return True
        if regulation is not None:
            return f"regulatory:{regulation}" in self.flags
        return any(flag.startswith("regulatory:") for flag in self.flags)


class ScheduleMetadata(ContractModel):
    """Schedule-level descriptive metadata."""

    created_at: datetime
    total_tasks: int = 0
    fact_ratio: float = 0.0
    avg_confidence: float = 0.0


class ScheduleValidationSummary(ContractModel):
    """Schedule-level validation summary written at finalization."""

    citation_coverage: float = 0.0
    provenance_score: float = 0.0
    contradictions: list[dict[str, Any]] = Field(default_factory=list)
    ledger_summary: dict[str, Any] = Field(default_factory=dict)
    gates_passed: list[str] = Field(default_factory=list)


class Schedule(ContractModel):
    """The output data contract handed to the chart renderer."""

    id: str = ""
    project_name: str = ""
    tasks: list[Task] = Field(default_factory=list)
    metadata: ScheduleMetadata | None = None
    validation_metadata: ScheduleValidationSummary | None = None
    final_quality_gates: dict[str, Any] | None = None
    repair_log: dict[str, Any] | None = None


def new_schedule_id() -> str:
    return f"schedule-{uuid.uuid4().hex[:12]}"


def build_metadata(tasks: list[Task], created_at: datetime) -> ScheduleMetadata:
    """Compute schedule metadata from the current tasks."""
    total = len(tasks)
    explicit = sum(1 for t in tasks if t.origin == Origin.EXPLICIT)
    return ScheduleMetadata(
        created_at=created_at,
        total_tasks=total,
        fact_ratio=explicit / total if total else 0.0,
        avg_confidence=sum(t.confidence for t in tasks) / total if total else 0.0,
    )


def _in_unit_range(value: float | None) -> bool:
    return value is None or 0.0 <= value <= 1.0


def contract_violations(schedule: Schedule) -> list[dict[str, Any]]:
    """Check a schedule against the strict output contract.

    Returns:
        One dict per violation (``loc`` and ``msg``); empty when compliant.
    """
    violations: list[dict[str, Any]] = []

    def violate(loc: str, msg: str) -> None:
        violations.append({"loc": loc, "msg": msg})

    if not schedule.id:
        violate("id", "missing schedule identifier")
    if not schedule.project_name:
        violate("projectName", "missing project name")
    if schedule.metadata is None:
        violate("metadata", "missing schedule metadata")
    elif not _in_unit_range(schedule.metadata.fact_ratio) or not _in_unit_range(
        schedule.metadata.avg_confidence
    ):
        violate("metadata", "metadata ratio out of range")

    seen_ids: set[str] = set()
    for index, task in enumerate(schedule.tasks):
        loc = f"tasks[{index}]"
        if not task.id:
            violate(f"{loc}.id", "missing task identifier")
        elif task.id in seen_ids:
            violate(f"{loc}.id", f"duplicate task identifier {task.id}")
        else:
            seen_ids.add(task.id)

        if not _in_unit_range(task.confidence):
            violate(f"{loc}.confidence", f"confidence {task.confidence} outside [0, 1]")

        for name, sourced in task.sourced_fields().items():
            if not _in_unit_range(sourced.confidence):
                violate(f"{loc}.{name}.confidence", f"confidence {sourced.confidence} outside [0, 1]")

        requirement = task.regulatory_requirement
        if requirement is not None and not _in_unit_range(requirement.confidence):
            violate(
                f"{loc}.regulatoryRequirement.confidence",
                f"confidence {requirement.confidence} outside [0, 1]",
            )

        meta = task.validation_metadata
        if meta is None:
            violate(f"{loc}.validationMetadata", "missing validation metadata")
        elif not _in_unit_range(meta.citation_coverage) or not _in_unit_range(
            meta.provenance_score
        ):
            violate(f"{loc}.validationMetadata", "validation score outside [0, 1]")

    return violations
