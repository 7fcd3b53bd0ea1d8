"""
Citation validation.

A citation is valid only when the cited document exists in the corpus and
the text at the recorded character offsets equals the recorded quote.
Invalid citations count as absent for coverage.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from claimcheck.claims.models import Claim
from claimcheck.schemas import Citation, Origin, SourceDocument
from claimcheck.utils.logging import get_logger

logger = get_logger(__name__)


class CitationStatus(str, Enum):
    """Outcome of a citation check."""

    VALID = "valid"
    MISSING = "missing"  # Claim has no citation
    INCOMPLETE = "incomplete"  # Document name, quote or offsets absent
    DOCUMENT_NOT_FOUND = "document_not_found"
    OFFSETS_OUT_OF_RANGE = "offsets_out_of_range"
    QUOTE_MISMATCH = "quote_mismatch"


@dataclass(frozen=True)
class CitationCheck:
    """Result of checking one claim's citation."""

    claim_id: str
    status: CitationStatus
    reason: str = ""

    @property
    def valid(self) -> bool:
        return self.status == CitationStatus.VALID

    def to_dict(self) -> dict[str, Any]:
        return {
            "claimId": self.claim_id,
            "valid": self.valid,
            "status": self.status.value,
            "reason": self.reason,
        }


def index_documents(documents: Iterable[SourceDocument]) -> dict[str, SourceDocument]:
    """Index documents by name."""
    return {doc.name: doc for doc in documents}


class CitationValidator:
    """Checks claim citations against the source document corpus."""

    def __init__(self, documents: Mapping[str, SourceDocument]):
        self._documents = documents

    def check_citation(self, claim_id: str, citation: Citation | None) -> CitationCheck:
        if citation is None:
            return CitationCheck(claim_id, CitationStatus.MISSING, "claim is uncited")

        if (
            not citation.document_name
            or not citation.exact_quote
            or citation.start_char is None
            or citation.end_char is None
        ):
            return CitationCheck(
                claim_id, CitationStatus.INCOMPLETE, "citation lacks document, quote or offsets"
            )

        document = self._documents.get(citation.document_name)
        if document is None:
            return CitationCheck(
                claim_id,
                CitationStatus.DOCUMENT_NOT_FOUND,
                f"document '{citation.document_name}' not in corpus",
            )

        start, end = citation.start_char, citation.end_char
        if start < 0 or end <= start or end > len(document.content):
            return CitationCheck(
                claim_id,
                CitationStatus.OFFSETS_OUT_OF_RANGE,
                f"offsets [{start}, {end}) outside document of length {len(document.content)}",
            )

        if document.content[start:end] != citation.exact_quote:
            return CitationCheck(
                claim_id,
                CitationStatus.QUOTE_MISMATCH,
                f"text at [{start}, {end}) does not match quoted text",
            )

        return CitationCheck(claim_id, CitationStatus.VALID)

    def validate(self, claim: Claim) -> CitationCheck:
        """Check a claim's citation."""
        check = self.check_citation(claim.claim_id, claim.citation)
        if claim.citation is not None and not check.valid:
            logger.info(
                "Citation rejected",
                claim_id=claim.claim_id,
                status=check.status.value,
                reason=check.reason,
            )
        return check


def citation_coverage(claims: list[Claim], checks: Mapping[str, CitationCheck]) -> float:
    """Share of a task's claims that are explicit and validly cited.

    Uncited and invalid-citation claims count toward the denominator only.
    A task with no claims has coverage 0.0.
    """
    if not claims:
        return 0.0
    covered = sum(
        1
        for claim in claims
        if claim.origin == Origin.EXPLICIT
        and claim.claim_id in checks
        and checks[claim.claim_id].valid
    )
    return covered / len(claims)
