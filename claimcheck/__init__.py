"""
ClaimCheck - claim validation and quality repair for generated schedules.

Decomposes schedule tasks into atomic claims, verifies their citations
against the source documents, detects contradictions across the schedule,
recalibrates confidence and repairs quality gate failures within a bounded
number of attempts.
"""

__version__ = "0.1.0"
