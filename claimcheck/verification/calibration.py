"""
Confidence calibration.

Recomputes a claim's confidence from its task's citation coverage, the
high-severity contradictions it is part of, its provenance score and its
origin:

    confidence = clamp(base + coverage + contradiction + provenance + origin)

Calibration always starts from the claim's extracted (base) confidence, so
running it again over the same inputs gives the same result. It must run
only after contradiction detection has covered the whole ledger.
"""

from dataclasses import dataclass, field
from typing import Any

from claimcheck.claims.ledger import ClaimLedger, clamp_unit
from claimcheck.claims.models import Claim, Contradiction, Severity
from claimcheck.schemas import Origin
from claimcheck.utils.config import CalibrationConfig
from claimcheck.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CalibrationResult:
    """Calibrated confidence of one claim and how it was reached."""

    claim_id: str
    base_confidence: float
    confidence: float
    adjustments: dict[str, float] = field(default_factory=dict)
    reasons: list[str] = field(default_factory=list)

    @property
    def reason(self) -> str:
        if not self.reasons:
            return "High confidence across all factors"
        return "; ".join(self.reasons)

    def to_dict(self) -> dict[str, Any]:
        return {
            "baseConfidence": self.base_confidence,
            "adjustments": {k: round(v, 4) for k, v in self.adjustments.items()},
            "reason": self.reason,
        }


class ConfidenceCalibrator:
    """Deterministic additive confidence calibration."""

    def __init__(self, config: CalibrationConfig, provenance_threshold: float):
        self._config = config
        self._provenance_threshold = provenance_threshold

    def compute(
        self,
        claim: Claim,
        *,
        citation_valid: bool,
        task_coverage: float,
        contradictions: list[Contradiction],
        provenance_score: float,
    ) -> CalibrationResult:
        """
        Compute a claim's calibrated confidence without mutating it.

        Args:
            claim: Claim to calibrate.
            citation_valid: Whether the claim's citation passed validation.
            task_coverage: Citation coverage of the claim's task.
            contradictions: Contradictions the claim is part of.
            provenance_score: The claim's provenance score.
        """
        cfg = self._config
        reasons: list[str] = []

        coverage_adj = 0.0
        if task_coverage >= cfg.high_coverage:
            coverage_adj = cfg.high_coverage_bonus
        elif task_coverage < cfg.low_coverage:
            coverage_adj = cfg.low_coverage_penalty
            reasons.append("Low task citation coverage")

        if not citation_valid:
            reasons.append("Weak or missing citation")

        high = sum(1 for c in contradictions if c.severity == Severity.HIGH)
        contradiction_adj = cfg.high_contradiction_penalty * high
        if high:
            reasons.append("Contradictions detected")

        provenance_adj = 0.0
        if provenance_score < self._provenance_threshold:
            provenance_adj = cfg.low_provenance_penalty
            reasons.append("Low provenance score")

        origin_adj = 0.0
        if claim.origin == Origin.EXPLICIT:
            origin_adj = cfg.explicit_origin_bonus
        else:
            reasons.append("Inference-based claim")

        total = coverage_adj + contradiction_adj + provenance_adj + origin_adj
        return CalibrationResult(
            claim_id=claim.claim_id,
            base_confidence=claim.base_confidence,
            confidence=clamp_unit(claim.base_confidence + total),
            adjustments={
                "coverage": coverage_adj,
                "contradiction": contradiction_adj,
                "provenance": provenance_adj,
                "origin": origin_adj,
            },
            reasons=reasons,
        )

    def calibrate(
        self,
        ledger: ClaimLedger,
        claim: Claim,
        *,
        task_coverage: float,
        provenance_score: float,
    ) -> CalibrationResult:
        """Calibrate a ledger claim in place and record the calibration on it."""
        result = self.compute(
            claim,
            citation_valid=ledger.has_valid_citation(claim.claim_id),
            task_coverage=task_coverage,
            contradictions=ledger.contradictions_for_claim(claim.claim_id),
            provenance_score=provenance_score,
        )
        ledger.update_confidence(claim.claim_id, result.confidence)
        claim.calibration = result.to_dict()

        logger.debug(
            "Claim calibrated",
            claim_id=claim.claim_id,
            base=claim.base_confidence,
            confidence=claim.confidence,
        )
        return result


def mean_confidence(claims: list[Claim]) -> float | None:
    """Mean claim confidence, or None for no claims."""
    if not claims:
        return None
    return sum(c.confidence for c in claims) / len(claims)
