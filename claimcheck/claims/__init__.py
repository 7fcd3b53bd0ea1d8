"""
Claim extraction and storage.
"""

from claimcheck.claims.extractor import (
    ClaimExtractor,
    assign_task_keys,
    make_claim_id,
    normalize_subject,
)
from claimcheck.claims.ledger import ClaimLedger, clamp_unit
from claimcheck.claims.models import (
    Claim,
    ClaimType,
    Contradiction,
    ContradictionType,
    Severity,
)

__all__ = [
    "Claim",
    "ClaimType",
    "Contradiction",
    "ContradictionType",
    "Severity",
    "ClaimExtractor",
    "ClaimLedger",
    "assign_task_keys",
    "clamp_unit",
    "make_claim_id",
    "normalize_subject",
]
