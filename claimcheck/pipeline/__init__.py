"""
Job orchestration and external collaborators.
"""

from claimcheck.pipeline.collaborators import (
    DocumentSource,
    HttpTaskGenerator,
    InMemoryDocumentSource,
    StaticTaskGenerator,
    TaskGenerator,
)
from claimcheck.pipeline.jobs import JobRegistry, JobStatus, PipelineJob
from claimcheck.pipeline.orchestrator import Orchestrator, PipelineOptions, PipelineResult

__all__ = [
    "DocumentSource",
    "HttpTaskGenerator",
    "InMemoryDocumentSource",
    "JobRegistry",
    "JobStatus",
    "Orchestrator",
    "PipelineJob",
    "PipelineOptions",
    "PipelineResult",
    "StaticTaskGenerator",
    "TaskGenerator",
]
