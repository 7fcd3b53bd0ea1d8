"""
Claim ledger: the per-job store of claims and contradictions.

One ledger belongs to exactly one job. It is constructed by the
orchestrator at the start of a run and dropped with it; there is no
module-level ledger.
"""

from collections import Counter, defaultdict
from typing import Any

from claimcheck.claims.models import Claim, ClaimType, Contradiction, Severity
from claimcheck.utils.logging import get_logger

logger = get_logger(__name__)


def clamp_unit(value: float) -> float:
    """Clamp a score into [0, 1]."""
    return min(1.0, max(0.0, value))


class ClaimLedger:
    """In-memory claim and contradiction store for one job."""

    def __init__(self, job_id: str | None = None) -> None:
        self.job_id = job_id
        self._claims: dict[str, Claim] = {}
        self._contradictions: dict[str, Contradiction] = {}
        self._citation_valid: dict[str, bool] = {}

    def __len__(self) -> int:
        return len(self._claims)

    def __contains__(self, claim_id: object) -> bool:
        return claim_id in self._claims

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def add_claim(self, claim: Claim) -> None:
        if claim.claim_id in self._claims:
            raise ValueError(f"Duplicate claim id in ledger: {claim.claim_id}")
        self._claims[claim.claim_id] = claim

    def add_claims(self, claims: list[Claim]) -> None:
        for claim in claims:
            self.add_claim(claim)

    def get(self, claim_id: str) -> Claim:
        return self._claims[claim_id]

    def get_all(self) -> list[Claim]:
        """All claims in insertion order."""
        return list(self._claims.values())

    def get_by_task(self, task_id: str) -> list[Claim]:
        return [c for c in self._claims.values() if c.task_id == task_id]

    def get_by_subject(self, claim_type: ClaimType, subject: str) -> list[Claim]:
        return [c for c in self._claims.values() if c.group_key == (claim_type, subject)]

    def groups(self) -> dict[tuple[ClaimType, str], list[Claim]]:
        """Claims grouped by (type, subject key), groups in first-seen order."""
        grouped: dict[tuple[ClaimType, str], list[Claim]] = defaultdict(list)
        for claim in self._claims.values():
            grouped[claim.group_key].append(claim)
        return dict(grouped)

    def get_below(self, threshold: float) -> list[Claim]:
        return [c for c in self._claims.values() if c.confidence < threshold]

    def get_above(self, threshold: float) -> list[Claim]:
        return [c for c in self._claims.values() if c.confidence >= threshold]

    def update_confidence(self, claim_id: str, confidence: float) -> float:
        """Set a claim's confidence in place, clamped to [0, 1].

        Returns:
            The stored (clamped) confidence.
        """
        claim = self._claims[claim_id]
        claim.confidence = clamp_unit(confidence)
        return claim.confidence

    # ------------------------------------------------------------------
    # Citation checks
    # ------------------------------------------------------------------

    def record_citation_check(self, claim_id: str, valid: bool) -> None:
        self._citation_valid[claim_id] = valid

    def has_valid_citation(self, claim_id: str) -> bool:
        """True only when the claim's citation was checked and found valid."""
        return self._citation_valid.get(claim_id, False)

    # ------------------------------------------------------------------
    # Contradictions
    # ------------------------------------------------------------------

    def add_contradiction(self, contradiction: Contradiction) -> bool:
        """Add a contradiction; ignored if one with the same id exists.

        Returns:
            True if added.
        """
        if contradiction.contradiction_id in self._contradictions:
            return False
        self._contradictions[contradiction.contradiction_id] = contradiction
        return True

    def get_contradictions(self) -> list[Contradiction]:
        return list(self._contradictions.values())

    def contradictions_for_claim(self, claim_id: str) -> list[Contradiction]:
        return [c for c in self._contradictions.values() if c.involves(claim_id)]

    def contradictions_for_task(self, task_id: str) -> list[Contradiction]:
        claim_ids = {c.claim_id for c in self.get_by_task(task_id)}
        return [
            c
            for c in self._contradictions.values()
            if c.claim_a_id in claim_ids or c.claim_b_id in claim_ids
        ]

    def unresolved(self, severity: Severity | None = None) -> list[Contradiction]:
        return [
            c
            for c in self._contradictions.values()
            if not c.is_resolved and (severity is None or c.severity == severity)
        ]

    def resolve(self, contradiction_id: str, winner_id: str) -> Contradiction:
        """Record the winning claim of a contradiction."""
        contradiction = self._contradictions[contradiction_id]
        if not contradiction.involves(winner_id):
            raise ValueError(
                f"Claim {winner_id} is not part of contradiction {contradiction_id}"
            )
        contradiction.resolution = winner_id
        return contradiction

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def summary(self) -> dict[str, Any]:
        """Counts by claim type, contradiction severity and citation state."""
        by_type = Counter(c.claim_type.value for c in self._claims.values())
        by_severity = Counter(c.severity.value for c in self._contradictions.values())
        cited = sum(1 for c in self._claims.values() if c.is_cited)
        return {
            "totalClaims": len(self._claims),
            "claimsByType": dict(sorted(by_type.items())),
            "cited": cited,
            "uncited": len(self._claims) - cited,
            "totalContradictions": len(self._contradictions),
            "contradictionsBySeverity": dict(sorted(by_severity.items())),
            "unresolvedHigh": len(self.unresolved(Severity.HIGH)),
        }
