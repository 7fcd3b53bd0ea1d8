"""
Semantic repair of quality gate failures.

One strategy per gate, registered by gate name. Strategies mutate the
schedule and the job's ledger in place and return human-readable change
descriptions; nothing is ever deleted (contradictions are resolved, not
removed, and uncited values are annotated, not dropped).

The bounded repair loop itself lives in the orchestrator, which checks for
cancellation and the job deadline between attempts. This module provides
the strategies, the registry and the audit log.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from claimcheck.claims.extractor import assign_task_keys
from claimcheck.claims.ledger import ClaimLedger, clamp_unit
from claimcheck.claims.models import Claim, Severity
from claimcheck.quality.gates import GateName, QualityGateReport, regulatory_matches
from claimcheck.schemas import (
    InferenceRationale,
    Origin,
    RegulatoryRequirement,
    Schedule,
    Task,
    ValidationMetadata,
    build_metadata,
    new_schedule_id,
)
from claimcheck.utils.config import Settings
from claimcheck.utils.logging import get_logger
from claimcheck.verification.calibration import mean_confidence

logger = get_logger(__name__)

DEFAULT_PROJECT_NAME = "Untitled Project"

# Claim field name -> Task attribute
FIELD_ATTRIBUTES: dict[str, str] = {
    "duration": "duration",
    "startDate": "start_date",
    "dependencies": "dependencies",
    "resource": "resource",
    "regulatoryRequirement": "regulatory_requirement",
}


class RepairStatus(str, Enum):
    """Final status of a job's repair loop."""

    NOT_NEEDED = "not_needed"  # No attempt was made and no blocking failure remains
    REPAIRED = "repaired"  # Attempts made; no blocking failure remains
    PARTIAL = "partial"  # Blocking failures remain (attempts exhausted or no strategy)
    TIMEOUT = "timeout"  # Job budget ran out before the loop finished


@dataclass
class RepairContext:
    """Everything a strategy may read or mutate during one attempt."""

    schedule: Schedule
    ledger: ClaimLedger
    settings: Settings
    task_keys: list[str]
    now: datetime

    def task_for(self, task_key: str) -> Task | None:
        for task, key in zip(self.schedule.tasks, self.task_keys):
            if key == task_key:
                return task
        return None

    def tasks_with_keys(self) -> list[tuple[Task, str]]:
        return list(zip(self.schedule.tasks, self.task_keys))


@dataclass
class RepairLogEntry:
    """One strategy application within one attempt."""

    attempt: int
    gate: str
    strategy: str
    changes: list[str] = field(default_factory=list)
    success: bool = False
    resulting_score: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempt": self.attempt,
            "gate": self.gate,
            "strategy": self.strategy,
            "changes": list(self.changes),
            "success": self.success,
            "resultingScore": (
                round(self.resulting_score, 4) if self.resulting_score is not None else None
            ),
        }


@dataclass
class RepairLog:
    """Append-only audit trail of one job's repair loop."""

    entries: list[RepairLogEntry] = field(default_factory=list)
    attempts: int = 0
    final_status: RepairStatus = RepairStatus.NOT_NEEDED
    remaining_failures: list[str] = field(default_factory=list)
    remaining_warnings: list[str] = field(default_factory=list)

    def finish(self, report: QualityGateReport, *, timed_out: bool = False) -> None:
        """Record the final status from the last gate report."""
        self.remaining_failures = report.failure_names
        self.remaining_warnings = report.warning_names
        if timed_out:
            self.final_status = RepairStatus.TIMEOUT
        elif not report.passed:
            self.final_status = RepairStatus.PARTIAL
        elif self.attempts:
            self.final_status = RepairStatus.REPAIRED
        else:
            self.final_status = RepairStatus.NOT_NEEDED

    def to_dict(self) -> dict[str, Any]:
        return {
            "finalStatus": self.final_status.value,
            "attempts": self.attempts,
            "entries": [e.to_dict() for e in self.entries],
            "remainingFailures": list(self.remaining_failures),
            "remainingWarnings": list(self.remaining_warnings),
        }


# =============================================================================
# Strategies
# =============================================================================


class RepairStrategy(ABC):
    """Automated, auditable fix for one gate."""

    gate: str = ""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def apply(self, ctx: RepairContext) -> list[str]:
        """Apply the fix in place.

        Returns:
            Descriptions of the changes made (empty when nothing changed).
        """


class CitationCoverageRepair(RepairStrategy):
    """
    Annotates uncited values with an inference rationale.

    This does not raise citation coverage: a rationale is not a citation,
    and coverage counts validly cited explicit claims only.
    """

    gate = GateName.CITATION_COVERAGE.value

    def apply(self, ctx: RepairContext) -> list[str]:
        changes: list[str] = []
        for task, key in ctx.tasks_with_keys():
            for claim in ctx.ledger.get_by_task(key):
                if ctx.ledger.has_valid_citation(claim.claim_id):
                    continue
                sourced = getattr(task, FIELD_ATTRIBUTES[claim.field_name], None)
                if sourced is None or sourced.inference_rationale is not None:
                    continue
                reason = (
                    "cited text could not be verified"
                    if claim.is_cited
                    else "no supporting citation in the source documents"
                )
                sourced.inference_rationale = InferenceRationale(
                    reasoning=f"Value treated as inferred: {reason}",
                    supporting_facts=[claim.text] if claim.text else [],
                )
                task.notes.append(f"{claim.field_name}: {reason}; rationale attached")
                changes.append(f"{claim.claim_id}: attached inference rationale")
        return changes


def pick_winner(a: Claim, b: Claim) -> tuple[Claim, Claim]:
    """Winner and loser of a contradiction.

    Explicit beats inference, then higher confidence, then lower claim id.
    """
    ranked = sorted(
        (a, b),
        key=lambda c: (c.origin != Origin.EXPLICIT, -c.confidence, c.claim_id),
    )
    return ranked[0], ranked[1]


class ContradictionRepair(RepairStrategy):
    """Resolves unresolved high-severity contradictions by claim priority."""

    gate = GateName.CONTRADICTION_SEVERITY.value

    def apply(self, ctx: RepairContext) -> list[str]:
        penalty = ctx.settings.repair.loser_penalty
        changes: list[str] = []
        for contradiction in ctx.ledger.unresolved(Severity.HIGH):
            claim_a = ctx.ledger.get(contradiction.claim_a_id)
            claim_b = ctx.ledger.get(contradiction.claim_b_id)
            winner, loser = pick_winner(claim_a, claim_b)

            ctx.ledger.resolve(contradiction.contradiction_id, winner.claim_id)
            before = loser.confidence
            after = ctx.ledger.update_confidence(loser.claim_id, loser.confidence - penalty)

            task = ctx.task_for(loser.task_id)
            if task is not None:
                task.notes.append(
                    f"{loser.field_name}: conflicts with {winner.claim_id}; "
                    f"superseded by the {winner.origin.value} value"
                )
            changes.append(
                f"{contradiction.contradiction_id}: kept {winner.claim_id}, "
                f"{loser.claim_id} confidence {before:.2f} -> {after:.2f}"
            )
        return changes


class ConfidenceRepair(RepairStrategy):
    """Boosts validly cited low-confidence claims; flags uncited ones for review."""

    gate = GateName.CONFIDENCE_MINIMUM.value

    def apply(self, ctx: RepairContext) -> list[str]:
        threshold = ctx.settings.validation.min_confidence_threshold
        boost = ctx.settings.repair.confidence_boost
        changes: list[str] = []
        touched: set[str] = set()

        for claim in ctx.ledger.get_below(threshold):
            if ctx.ledger.has_valid_citation(claim.claim_id):
                before = claim.confidence
                after = ctx.ledger.update_confidence(claim.claim_id, before + boost)
                changes.append(f"{claim.claim_id}: confidence {before:.2f} -> {after:.2f}")
                touched.add(claim.task_id)
                continue

            task = ctx.task_for(claim.task_id)
            flag = f"manual_review:{claim.field_name}"
            if task is not None and flag not in task.flags:
                task.flags.append(flag)
                changes.append(f"{claim.claim_id}: flagged for manual review")

        for task_key in touched:
            task = ctx.task_for(task_key)
            mean = mean_confidence(ctx.ledger.get_by_task(task_key))
            if task is not None and mean is not None:
                task.confidence = mean
        return changes


class SchemaRepair(RepairStrategy):
    """Fills missing identifiers and metadata and clamps out-of-range scores."""

    gate = GateName.SCHEMA_COMPLIANCE.value

    def apply(self, ctx: RepairContext) -> list[str]:
        schedule = ctx.schedule
        changes: list[str] = []

        if not schedule.id:
            schedule.id = new_schedule_id()
            changes.append(f"assigned schedule id {schedule.id}")
        if not schedule.project_name:
            schedule.project_name = DEFAULT_PROJECT_NAME
            changes.append(f"set project name to '{DEFAULT_PROJECT_NAME}'")

        # Missing ids get the key their claims were extracted under
        keys = assign_task_keys(schedule.tasks)
        seen: set[str] = set()
        for index, (task, key) in enumerate(zip(schedule.tasks, keys)):
            if not task.id:
                task.id = key
                changes.append(f"tasks[{index}]: assigned id {key}")
            elif task.id in seen:
                old = task.id
                task.id = f"{old}-{index + 1}"
                changes.append(f"tasks[{index}]: renamed duplicate id {old} -> {task.id}")
            seen.add(task.id)

            changes.extend(self._clamp_task(task, index))

            if task.validation_metadata is None:
                task.validation_metadata = ValidationMetadata()
                changes.append(f"tasks[{index}]: added empty validation metadata")
            else:
                meta = task.validation_metadata
                meta.citation_coverage = clamp_unit(meta.citation_coverage)
                meta.provenance_score = clamp_unit(meta.provenance_score)

        if schedule.metadata is None:
            schedule.metadata = build_metadata(schedule.tasks, ctx.now)
            changes.append("added schedule metadata")
        else:
            schedule.metadata.fact_ratio = clamp_unit(schedule.metadata.fact_ratio)
            schedule.metadata.avg_confidence = clamp_unit(schedule.metadata.avg_confidence)

        return changes

    def _clamp_task(self, task: Task, index: int) -> list[str]:
        changes: list[str] = []
        clamped = clamp_unit(task.confidence)
        if clamped != task.confidence:
            changes.append(f"tasks[{index}].confidence: clamped {task.confidence} -> {clamped}")
            task.confidence = clamped

        holders: dict[str, Any] = dict(task.sourced_fields())
        if task.regulatory_requirement is not None:
            holders["regulatoryRequirement"] = task.regulatory_requirement
        for name, holder in holders.items():
            if holder.confidence is None:
                continue
            clamped = clamp_unit(holder.confidence)
            if clamped != holder.confidence:
                changes.append(
                    f"tasks[{index}].{name}.confidence: clamped {holder.confidence} -> {clamped}"
                )
                holder.confidence = clamped
        return changes


class RegulatoryRepair(RepairStrategy):
    """Flags tasks that match a regulatory pattern but carry no flag."""

    gate = GateName.REGULATORY_FLAGS.value

    def apply(self, ctx: RepairContext) -> list[str]:
        changes: list[str] = []
        for task, regulation in regulatory_matches(ctx.schedule.tasks):
            if task.has_regulatory_flag(regulation):
                continue
            task.flags.append(f"regulatory:{regulation}")
            if task.regulatory_requirement is None:
                task.regulatory_requirement = RegulatoryRequirement(
                    is_required=True,
                    regulation=regulation,
                    origin=Origin.INFERENCE,
                    inference_rationale=InferenceRationale(
                        reasoning=f"Task name matches the {regulation} keyword pattern",
                    ),
                )
            changes.append(f"{task.id or task.name}: flagged {regulation}")
        return changes


# =============================================================================
# Registry and engine
# =============================================================================


class RepairStrategyRegistry:
    """Repair strategies keyed by the gate they fix."""

    def __init__(self) -> None:
        self._strategies: dict[str, RepairStrategy] = {}

    def register(self, strategy: RepairStrategy, *, replace: bool = False) -> None:
        """
        Register a strategy for its gate.

        Raises:
            ValueError: If the gate already has a strategy and replace is False.
        """
        if not strategy.gate:
            raise ValueError(f"{strategy.name} does not name a gate")
        if strategy.gate in self._strategies and not replace:
            raise ValueError(f"Strategy for gate '{strategy.gate}' already registered")
        self._strategies[strategy.gate] = strategy

    def unregister(self, gate: str) -> RepairStrategy | None:
        return self._strategies.pop(gate, None)

    def get(self, gate: str) -> RepairStrategy | None:
        return self._strategies.get(gate)

    def gates(self) -> list[str]:
        return list(self._strategies)

    def copy(self) -> "RepairStrategyRegistry":
        registry = RepairStrategyRegistry()
        registry._strategies = dict(self._strategies)
        return registry


def default_registry() -> RepairStrategyRegistry:
    registry = RepairStrategyRegistry()
    for strategy in (
        CitationCoverageRepair(),
        ContradictionRepair(),
        ConfidenceRepair(),
        SchemaRepair(),
        RegulatoryRepair(),
    ):
        registry.register(strategy)
    return registry


class SemanticRepairEngine:
    """Selects and applies strategies for the gates a report lists."""

    def __init__(self, registry: RepairStrategyRegistry | None = None):
        self.registry = registry or default_registry()

    def snapshot(self) -> "SemanticRepairEngine":
        """Engine over a copy of the registry; later registrations do not reach it."""
        return SemanticRepairEngine(self.registry.copy())

    def plan(self, report: QualityGateReport, *, include_warnings: bool) -> list[RepairStrategy]:
        """Strategies for the report's failures (and warnings, if asked), in gate order."""
        targets = list(report.failures)
        if include_warnings:
            targets.extend(report.warnings)
        planned: list[RepairStrategy] = []
        for result in targets:
            strategy = self.registry.get(result.name)
            if strategy is not None and strategy not in planned:
                planned.append(strategy)
        return planned

    def apply(
        self, attempt: int, ctx: RepairContext, strategies: list[RepairStrategy]
    ) -> list[RepairLogEntry]:
        """Apply strategies once. Entries are settled after the next gate run."""
        entries: list[RepairLogEntry] = []
        for strategy in strategies:
            changes = strategy.apply(ctx)
            entries.append(
                RepairLogEntry(
                    attempt=attempt,
                    gate=strategy.gate,
                    strategy=strategy.name,
                    changes=changes,
                )
            )
            logger.info(
                "Repair strategy applied",
                attempt=attempt,
                gate=strategy.gate,
                strategy=strategy.name,
                changes=len(changes),
            )
        return entries

    @staticmethod
    def settle(entries: list[RepairLogEntry], report: QualityGateReport) -> None:
        """Fill in success and resulting score from the post-repair gate run."""
        for entry in entries:
            result = report.get(entry.gate)
            if result is None:
                continue
            entry.success = result.passed
            entry.resulting_score = result.score
