"""
Provenance auditing.

Scores how trustworthy a claim's citation is, independent of whether the
claim itself is correct:

    score = w_c * completeness + w_v * verification + w_f * freshness

- completeness: share of required citation attributes present
- verification: 1.0 when the quote sits at the recorded offsets,
  0.5 when the quote exists elsewhere in the document (offset drift),
  0.0 when it cannot be found at all (hallucinated)
- freshness: linear decay of citation age over max_citation_age_days,
  measured in whole days so repeated audits on one day agree

Claims without citations score 0.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from claimcheck.claims.models import Claim
from claimcheck.schemas import Citation, SourceDocument
from claimcheck.utils.config import ProvenanceConfig
from claimcheck.utils.logging import get_logger
from claimcheck.verification.citation import CitationCheck

logger = get_logger(__name__)

REQUIRED_CITATION_FIELDS = (
    "document_name",
    "exact_quote",
    "start_char",
    "end_char",
    "retrieved_at",
)

OFFSET_DRIFT_VERIFICATION = 0.5


@dataclass(frozen=True)
class ProvenanceResult:
    """Provenance audit of one claim."""

    claim_id: str
    score: float
    completeness: float = 0.0
    verification: float = 0.0
    freshness: float = 0.0
    hallucinated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "claimId": self.claim_id,
            "score": round(self.score, 4),
            "completeness": round(self.completeness, 4),
            "verification": self.verification,
            "freshness": round(self.freshness, 4),
            "hallucinated": self.hallucinated,
        }


class ProvenanceAuditor:
    """Scores citation quality and hallucination risk per claim."""

    def __init__(
        self,
        documents: Mapping[str, SourceDocument],
        config: ProvenanceConfig,
        now: datetime | None = None,
    ):
        self._documents = documents
        self._config = config
        self._now = now or datetime.now(UTC)

    def audit(self, claim: Claim, check: CitationCheck) -> ProvenanceResult:
        """Audit one claim given its citation check."""
        citation = claim.citation
        if citation is None:
            return ProvenanceResult(claim_id=claim.claim_id, score=0.0)

        completeness = self._completeness(citation)
        verification, hallucinated = self._verification(citation, check)
        freshness = self._freshness(citation)

        weights = self._config.weights
        score = (
            weights.completeness * completeness
            + weights.verification * verification
            + weights.freshness * freshness
        )
        score = min(1.0, max(0.0, score))

        if hallucinated:
            logger.warning(
                "Possible hallucinated citation",
                claim_id=claim.claim_id,
                document=citation.document_name,
            )

        return ProvenanceResult(
            claim_id=claim.claim_id,
            score=score,
            completeness=completeness,
            verification=verification,
            freshness=freshness,
            hallucinated=hallucinated,
        )

    def _completeness(self, citation: Citation) -> float:
        present = 0
        for name in REQUIRED_CITATION_FIELDS:
            value = getattr(citation, name)
            if value is not None and value != "":
                present += 1
        return present / len(REQUIRED_CITATION_FIELDS)

    def _verification(self, citation: Citation, check: CitationCheck) -> tuple[float, bool]:
        if check.valid:
            return 1.0, False
        document = self._documents.get(citation.document_name or "")
        if document is not None and citation.exact_quote and citation.exact_quote in document.content:
            return OFFSET_DRIFT_VERIFICATION, False
        return 0.0, True

    def _freshness(self, citation: Citation) -> float:
        retrieved = citation.retrieved_at
        if retrieved is None:
            return 0.0
        if retrieved.tzinfo is None:
            retrieved = retrieved.replace(tzinfo=UTC)
        age_days = (self._now.date() - retrieved.astimezone(UTC).date()).days
        if age_days <= 0:
            return 1.0
        return max(0.0, 1.0 - age_days / self._config.max_citation_age_days)


def task_provenance_score(results: list[ProvenanceResult]) -> float:
    """Mean provenance over a task's claims (0.0 for a task without claims)."""
    if not results:
        return 0.0
    return sum(r.score for r in results) / len(results)
