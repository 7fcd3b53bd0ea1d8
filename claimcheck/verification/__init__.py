"""
Claim verification: citations, provenance, contradictions and calibration.
"""

from claimcheck.verification.calibration import CalibrationResult, ConfidenceCalibrator
from claimcheck.verification.citation import (
    CitationCheck,
    CitationStatus,
    CitationValidator,
    citation_coverage,
    index_documents,
)
from claimcheck.verification.contradiction import ContradictionDetector
from claimcheck.verification.provenance import ProvenanceAuditor, ProvenanceResult
from claimcheck.verification.service import ValidationService

__all__ = [
    "CalibrationResult",
    "CitationCheck",
    "CitationStatus",
    "CitationValidator",
    "ConfidenceCalibrator",
    "ContradictionDetector",
    "ProvenanceAuditor",
    "ProvenanceResult",
    "ValidationService",
    "citation_coverage",
    "index_documents",
]
