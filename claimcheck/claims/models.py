"""
Claim and contradiction models.

A Claim is an atomic, independently verifiable assertion about one task
field. Claim kinds form a closed set (ClaimType); every kind maps to exactly
one comparison rule in the contradiction detector, or to none.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from claimcheck.schemas import Citation, Origin


class ClaimType(str, Enum):
    """Kind of task field a claim asserts."""

    DURATION = "duration"
    START_DATE = "startDate"
    DEPENDENCY = "dependency"
    RESOURCE = "resource"
    REQUIREMENT = "requirement"


class ContradictionType(str, Enum):
    """Kind of conflict between two claims."""

    NUMERICAL = "numerical"  # Quantities disagree
    POLARITY = "polarity"  # Opposing yes/no assertions
    TEMPORAL = "temporal"  # Dates disagree
    DEFINITIONAL = "definitional"  # Same label, dissimilar description


class Severity(str, Enum):
    """Contradiction severity."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class Claim:
    """
    An atomic claim extracted from one task field.

    claim_id, claim_type, task_id and value are identity and never change.
    confidence is updated in place by the calibrator and repair engine,
    always through the ledger so that it stays clamped to [0, 1].
    """

    claim_id: str
    claim_type: ClaimType
    task_id: str
    field_name: str
    value: Any
    subject: str
    origin: Origin
    base_confidence: float
    confidence: float
    unit: str | None = None
    citation: Citation | None = None
    text: str = ""
    calibration: dict[str, Any] = field(default_factory=dict)

    @property
    def is_cited(self) -> bool:
        return self.citation is not None

    @property
    def group_key(self) -> tuple["ClaimType", str]:
        """Key used to group comparable claims."""
        return (self.claim_type, self.subject)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.claim_id,
            "type": self.claim_type.value,
            "taskId": self.task_id,
            "field": self.field_name,
            "value": self.value,
            "unit": self.unit,
            "subject": self.subject,
            "origin": self.origin.value,
            "confidence": round(self.confidence, 4),
            "baseConfidence": self.base_confidence,
            "claim": self.text,
            "citation": (
                self.citation.model_dump(mode="json", by_alias=True) if self.citation else None
            ),
            "calibration": self.calibration,
        }


@dataclass
class Contradiction:
    """A detected conflict between two claims sharing a type and subject."""

    contradiction_id: str
    contradiction_type: ContradictionType
    severity: Severity
    claim_a_id: str
    claim_b_id: str
    subject: str
    description: str
    resolution: str | None = None  # Winning claim id, set only by repair
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_resolved(self) -> bool:
        return self.resolution is not None

    @property
    def claim_ids(self) -> tuple[str, str]:
        return (self.claim_a_id, self.claim_b_id)

    def involves(self, claim_id: str) -> bool:
        return claim_id in self.claim_ids

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.contradiction_id,
            "type": self.contradiction_type.value,
            "severity": self.severity.value,
            "claims": [self.claim_a_id, self.claim_b_id],
            "subject": self.subject,
            "description": self.description,
            "resolution": self.resolution,
            "details": self.details,
        }
