"""
Quality gates over a fully validated schedule.

Evaluation is stateless and idempotent: the manager reads the schedule and
the job's ledger and never writes to either, so it can be called before and
after every repair attempt.

Default gates:

| Gate                   | Passes when                                   | Blocker |
|------------------------|-----------------------------------------------|---------|
| CITATION_COVERAGE      | mean task citation coverage >= 0.75           | yes     |
| CONTRADICTION_SEVERITY | no unresolved high-severity contradictions    | yes     |
| CONFIDENCE_MINIMUM     | mean claim confidence >= 0.5                  | no      |
| SCHEMA_COMPLIANCE      | schedule satisfies the output contract        | yes     |
| REGULATORY_FLAGS       | every regulatory-looking task carries a flag  | no      |
"""

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from claimcheck.claims.ledger import ClaimLedger
from claimcheck.claims.models import Severity
from claimcheck.schemas import Schedule, Task, contract_violations
from claimcheck.utils.config import ValidationConfig
from claimcheck.utils.logging import get_logger

logger = get_logger(__name__)


class GateName(str, Enum):
    """Names of the built-in gates."""

    CITATION_COVERAGE = "CITATION_COVERAGE"
    CONTRADICTION_SEVERITY = "CONTRADICTION_SEVERITY"
    CONFIDENCE_MINIMUM = "CONFIDENCE_MINIMUM"
    SCHEMA_COMPLIANCE = "SCHEMA_COMPLIANCE"
    REGULATORY_FLAGS = "REGULATORY_FLAGS"


# =============================================================================
# Regulatory heuristic
# =============================================================================

GENERAL_COMPLIANCE = "General Compliance"

REGULATION_PATTERNS: dict[str, re.Pattern[str]] = {
    "FDA": re.compile(r"FDA|510\(k\)|premarket|clinical trial", re.IGNORECASE),
    "HIPAA": re.compile(r"HIPAA|protected health|\bphi\b|patient privacy", re.IGNORECASE),
    "SOX": re.compile(r"Sarbanes-Oxley|\bSOX\b|financial audit", re.IGNORECASE),
    "GDPR": re.compile(r"GDPR|data protection|privacy regulation", re.IGNORECASE),
    "PCI": re.compile(r"PCI DSS|payment card|cardholder data", re.IGNORECASE),
}


def detect_regulation(text: str) -> str:
    """Name of the first regulation whose pattern matches, else General Compliance."""
    for regulation, pattern in REGULATION_PATTERNS.items():
        if pattern.search(text):
            return regulation
    return GENERAL_COMPLIANCE


def regulatory_matches(tasks: list[Task]) -> list[tuple[Task, str]]:
    """Tasks whose name matches a regulatory pattern, with the regulation."""
    matches = []
    for task in tasks:
        regulation = detect_regulation(task.name)
        if regulation != GENERAL_COMPLIANCE:
            matches.append((task, regulation))
    return matches


# =============================================================================
# Gate definitions and results
# =============================================================================


@dataclass(frozen=True)
class GateContext:
    """Read-only inputs of one gate evaluation."""

    schedule: Schedule
    ledger: ClaimLedger


@dataclass(frozen=True)
class QualityGate:
    """A named threshold over the validated schedule.

    ``evaluate`` returns a score; the gate passes when the score is at or
    above the threshold (or at or below it when ``higher_is_better`` is
    False).
    """

    name: str
    threshold: float
    blocker: bool
    evaluate: Callable[[GateContext], float]
    higher_is_better: bool = True
    description: str = ""

    def passes(self, score: float) -> bool:
        if self.higher_is_better:
            return score >= self.threshold
        return score <= self.threshold


@dataclass(frozen=True)
class GateResult:
    """Outcome of one gate."""

    name: str
    score: float | None
    threshold: float
    blocker: bool
    passed: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "gate": self.name,
            "score": round(self.score, 4) if self.score is not None else None,
            "threshold": self.threshold,
            "blocker": self.blocker,
            "passed": self.passed,
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class QualityGateReport:
    """Aggregate gate outcome.

    ``passed`` is True when no blocking gate failed; warnings never block.
    """

    passed: bool
    failures: list[GateResult] = field(default_factory=list)
    warnings: list[GateResult] = field(default_factory=list)
    gates: list[GateResult] = field(default_factory=list)

    @property
    def failure_names(self) -> list[str]:
        return [g.name for g in self.failures]

    @property
    def warning_names(self) -> list[str]:
        return [g.name for g in self.warnings]

    @property
    def passed_names(self) -> list[str]:
        return [g.name for g in self.gates if g.passed]

    def get(self, name: str) -> GateResult | None:
        for gate in self.gates:
            if gate.name == name:
                return gate
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "failures": [g.to_dict() for g in self.failures],
            "warnings": [g.to_dict() for g in self.warnings],
            "gates": [g.to_dict() for g in self.gates],
        }


# =============================================================================
# Built-in gate scores
# =============================================================================


def _citation_coverage_score(ctx: GateContext) -> float:
    tasks = ctx.schedule.tasks
    if not tasks:
        return 0.0
    total = sum(
        t.validation_metadata.citation_coverage if t.validation_metadata else 0.0 for t in tasks
    )
    return total / len(tasks)


def _unresolved_high_count(ctx: GateContext) -> float:
    return float(len(ctx.ledger.unresolved(Severity.HIGH)))


def _mean_confidence(ctx: GateContext) -> float:
    claims = ctx.ledger.get_all()
    if claims:
        return sum(c.confidence for c in claims) / len(claims)
    tasks = ctx.schedule.tasks
    if not tasks:
        return 0.0
    return sum(t.confidence for t in tasks) / len(tasks)


def _schema_compliance(ctx: GateContext) -> float:
    return 0.0 if contract_violations(ctx.schedule) else 1.0


def _regulatory_flag_ratio(ctx: GateContext) -> float:
    matches = regulatory_matches(ctx.schedule.tasks)
    if not matches:
        return 1.0
    flagged = sum(1 for task, regulation in matches if task.has_regulatory_flag(regulation))
    return flagged / len(matches)


def default_gates(config: ValidationConfig) -> list[QualityGate]:
    return [
        QualityGate(
            name=GateName.CITATION_COVERAGE.value,
            threshold=config.citation_coverage_threshold,
            blocker=True,
            evaluate=_citation_coverage_score,
            description="Mean per-task citation coverage",
        ),
        QualityGate(
            name=GateName.CONTRADICTION_SEVERITY.value,
            threshold=0.0,
            blocker=True,
            evaluate=_unresolved_high_count,
            higher_is_better=False,
            description="Unresolved high-severity contradictions",
        ),
        QualityGate(
            name=GateName.CONFIDENCE_MINIMUM.value,
            threshold=config.min_confidence_threshold,
            blocker=False,
            evaluate=_mean_confidence,
            description="Mean claim confidence",
        ),
        QualityGate(
            name=GateName.SCHEMA_COMPLIANCE.value,
            threshold=1.0,
            blocker=True,
            evaluate=_schema_compliance,
            description="Output data contract compliance",
        ),
        QualityGate(
            name=GateName.REGULATORY_FLAGS.value,
            threshold=1.0,
            blocker=False,
            evaluate=_regulatory_flag_ratio,
            description="Share of regulatory tasks carrying a flag",
        ),
    ]


# =============================================================================
# Manager
# =============================================================================


class QualityGateManager:
    """Evaluates the configured gates over a schedule and its ledger."""

    def __init__(self, config: ValidationConfig, gates: list[QualityGate] | None = None):
        self._config = config
        self._gates: list[QualityGate] = list(gates) if gates is not None else default_gates(config)

    def snapshot(self) -> "QualityGateManager":
        """Independent copy of the current gate list.

        A running job evaluates against its snapshot, so gates added or
        removed afterwards only apply to later jobs.
        """
        return QualityGateManager(self._config, gates=self._gates)

    def add_custom_gate(self, gate: QualityGate) -> None:
        if any(g.name == gate.name for g in self._gates):
            raise ValueError(f"Gate already registered: {gate.name}")
        self._gates.append(gate)

    def remove_gate(self, name: str) -> bool:
        """Remove a gate by name. Returns True if one was removed."""
        before = len(self._gates)
        self._gates = [g for g in self._gates if g.name != name]
        return len(self._gates) < before

    def get_gates(self) -> list[dict[str, Any]]:
        return [
            {
                "name": g.name,
                "threshold": g.threshold,
                "blocker": g.blocker,
                "description": g.description,
            }
            for g in self._gates
        ]

    def evaluate(self, schedule: Schedule, ledger: ClaimLedger) -> QualityGateReport:
        """Evaluate every gate.

        A gate whose evaluation raises is recorded as failed (blocking
        gates) or warned (non-blocking gates) with the error message.
        """
        ctx = GateContext(schedule=schedule, ledger=ledger)
        report = QualityGateReport(passed=True)

        for gate in self._gates:
            try:
                score = float(gate.evaluate(ctx))
                result = GateResult(
                    name=gate.name,
                    score=score,
                    threshold=gate.threshold,
                    blocker=gate.blocker,
                    passed=gate.passes(score),
                )
            except Exception as e:
                logger.error("Quality gate evaluation failed", gate=gate.name, error=str(e))
                result = GateResult(
                    name=gate.name,
                    score=None,
                    threshold=gate.threshold,
                    blocker=gate.blocker,
                    passed=False,
                    error=str(e),
                )

            report.gates.append(result)
            if not result.passed:
                if gate.blocker:
                    report.passed = False
                    report.failures.append(result)
                else:
                    report.warnings.append(result)

            logger.debug(
                "Quality gate evaluated",
                gate=gate.name,
                passed=result.passed,
                score=result.score,
                threshold=gate.threshold,
            )

        logger.info(
            "Quality gates evaluated",
            passed=report.passed,
            failures=report.failure_names,
            warnings=report.warning_names,
        )
        return report
