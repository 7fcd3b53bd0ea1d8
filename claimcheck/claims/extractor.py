"""
Claim extraction for ClaimCheck.

Decomposes one task into atomic claims, one per populated sourced field.
Extraction is a pure function of the task: claim ids are derived from the
task id and field name, so re-extracting the same task yields the same ids.
"""

import re
from typing import Any

from claimcheck.claims.models import Claim, ClaimType
from claimcheck.schemas import Citation, Origin, RegulatoryRequirement, SourcedField, Task
from claimcheck.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CLAIM_CONFIDENCE = 0.5

# Wire field name -> claim type
FIELD_CLAIM_TYPES: dict[str, ClaimType] = {
    "duration": ClaimType.DURATION,
    "startDate": ClaimType.START_DATE,
    "dependencies": ClaimType.DEPENDENCY,
    "resource": ClaimType.RESOURCE,
    "regulatoryRequirement": ClaimType.REQUIREMENT,
}

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_subject(text: str) -> str:
    """Normalize free text into a subject key.

    Lowercases, strips punctuation and collapses whitespace so that
    "Regulatory Review" and "regulatory  review." group together.
    """
    lowered = _PUNCTUATION.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def make_claim_id(task_key: str, field_name: str) -> str:
    return f"claim_{task_key}_{field_name}"


def assign_task_keys(tasks: list[Task]) -> list[str]:
    """Stable key per task position.

    Tasks keep their own id. Tasks without one get ``task-<n>`` (1-based
    position), suffixed if that collides with an existing id. The schema
    repair strategy assigns exactly these keys as the missing ids, so claims
    stay linked to their task after repair.
    """
    taken = {t.id for t in tasks if t.id}
    keys: list[str] = []
    for index, task in enumerate(tasks):
        if task.id:
            keys.append(task.id)
            continue
        candidate = f"task-{index + 1}"
        suffix = 1
        while candidate in taken:
            suffix += 1
            candidate = f"task-{index + 1}-{suffix}"
        taken.add(candidate)
        keys.append(candidate)
    return keys


def _describe(claim_type: ClaimType, value: Any, unit: str | None) -> str:
    if claim_type == ClaimType.DURATION:
        return f"Duration is {value} {unit or ''}".rstrip()
    if claim_type == ClaimType.START_DATE:
        return f"Starts on {value}"
    if claim_type == ClaimType.DEPENDENCY:
        deps = value if isinstance(value, list) else [value]
        return "Depends on " + ", ".join(str(d) for d in deps)
    if claim_type == ClaimType.RESOURCE:
        return f"Assigned to {value}"
    return str(value)


class ClaimExtractor:
    """
    Extracts atomic claims from a task.

    For each populated sourced field exactly one claim is emitted.
    Absent fields produce no claim. The claim inherits the field's
    confidence (default 0.5), origin and first citation.
    """

    def extract(self, task: Task, task_key: str | None = None) -> list[Claim]:
        """
        Extract claims from a task.

        Args:
            task: The task to decompose.
            task_key: Identifier to use for the task; defaults to task.id.

        Returns:
            Claims in field order (duration, startDate, dependencies,
            resource, regulatoryRequirement).
        """
        key = task_key or task.id
        task_subject = normalize_subject(task.name)
        claims: list[Claim] = []

        for field_name, sourced in task.sourced_fields().items():
            claims.append(self._from_sourced_field(key, task_subject, field_name, sourced))

        if task.regulatory_requirement is not None:
            claims.append(
                self._from_requirement(key, task_subject, task.regulatory_requirement)
            )

        logger.debug("Claims extracted", task_id=key, count=len(claims))
        return claims

    def _from_sourced_field(
        self,
        task_key: str,
        task_subject: str,
        field_name: str,
        sourced: SourcedField,
    ) -> Claim:
        claim_type = FIELD_CLAIM_TYPES[field_name]
        return self._build(
            task_key=task_key,
            field_name=field_name,
            claim_type=claim_type,
            value=sourced.value,
            unit=sourced.unit,
            subject=normalize_subject(sourced.subject) if sourced.subject else task_subject,
            origin=sourced.origin,
            confidence=sourced.confidence,
            citation=sourced.citation,
            text=_describe(claim_type, sourced.value, sourced.unit),
        )

    def _from_requirement(
        self,
        task_key: str,
        task_subject: str,
        requirement: RegulatoryRequirement,
    ) -> Claim:
        regulation = requirement.regulation or "regulatory"
        text = (
            f"Requires {regulation} approval"
            if requirement.is_required
            else f"Does not require {regulation} approval"
        )
        return self._build(
            task_key=task_key,
            field_name="regulatoryRequirement",
            claim_type=ClaimType.REQUIREMENT,
            value=requirement.is_required,
            unit=None,
            subject=normalize_subject(requirement.subject) if requirement.subject else task_subject,
            origin=requirement.origin,
            confidence=requirement.confidence,
            citation=requirement.citation,
            text=text,
        )

    def _build(
        self,
        *,
        task_key: str,
        field_name: str,
        claim_type: ClaimType,
        value: Any,
        unit: str | None,
        subject: str,
        origin: Origin,
        confidence: float | None,
        citation: Citation | None,
        text: str,
    ) -> Claim:
        base = DEFAULT_CLAIM_CONFIDENCE if confidence is None else confidence
        return Claim(
            claim_id=make_claim_id(task_key, field_name),
            claim_type=claim_type,
            task_id=task_key,
            field_name=field_name,
            value=value,
            unit=unit,
            subject=subject,
            origin=origin,
            base_confidence=base,
            confidence=min(1.0, max(0.0, base)),
            citation=citation,
            text=text,
        )
