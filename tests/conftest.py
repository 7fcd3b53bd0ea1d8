"""
Pytest fixtures and configuration for ClaimCheck tests.

Markers:
- @pytest.mark.unit: Single class/function, no external dependencies
  - DEFAULT: Tests without marker are auto-classified as unit
- @pytest.mark.integration: Multiple components wired together
  (orchestrator runs), external collaborators replaced by in-memory or
  MockTransport implementations

Mock Strategy:
- Upstream generator: StaticTaskGenerator or httpx.MockTransport
- Network: Prohibited in all tests
- Time: fixed ``NOW`` for citation age, injectable clock for job budgets
"""

import os
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest

# Set test environment before importing anything else
os.environ["CLAIMCHECK_CONFIG_DIR"] = str(Path(__file__).parent.parent / "config")

from claimcheck.utils.config import Settings  # noqa: E402

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

PROTOCOL_DOC = "protocol.txt"
PROTOCOL_TEXT = (
    "Regulatory review takes 15 days. "
    "Site activation begins on 2024-03-01. "
    "The QA team owns validation. "
    "Data migration needs 3 weeks. "
    "Vendor onboarding takes 10 days."
)


def pytest_configure(config):
    """Register custom markers for test classification."""
    config.addinivalue_line(
        "markers", "unit: Unit tests with no external dependencies (fast, <1s/test)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests across pipeline components"
    )


def pytest_collection_modifyitems(config, items):
    """Tests without an explicit classification marker are unit tests."""
    for item in items:
        has_classification = any(
            marker.name in ("unit", "integration") for marker in item.iter_markers()
        )
        if not has_classification:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Settings and documents
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    """Default settings, independent of config files and environment."""
    return Settings()


@pytest.fixture
def documents() -> list[dict[str, Any]]:
    """Source documents in wire format."""
    return [{"name": PROTOCOL_DOC, "content": PROTOCOL_TEXT}]


# =============================================================================
# Task factories
# =============================================================================


def _citation_for(
    quote: str,
    document: str = PROTOCOL_DOC,
    text: str = PROTOCOL_TEXT,
    retrieved_at: datetime = NOW,
) -> dict[str, Any]:
    """Citation with offsets computed from the document text."""
    start = text.index(quote)
    return {
        "documentName": document,
        "exactQuote": quote,
        "startChar": start,
        "endChar": start + len(quote),
        "provider": "INTERNAL",
        "retrievedAt": retrieved_at.isoformat(),
    }


def _sourced(
    value: Any,
    *,
    origin: str = "explicit",
    confidence: float | None = 0.8,
    quote: str | None = None,
    unit: str | None = None,
    subject: str | None = None,
) -> dict[str, Any]:
    """A sourced field in wire format, cited when ``quote`` is given."""
    field: dict[str, Any] = {"value": value, "origin": origin}
    if confidence is not None:
        field["confidence"] = confidence
    if unit is not None:
        field["unit"] = unit
    if subject is not None:
        field["subject"] = subject
    if quote is not None:
        field["sourceCitations"] = [_citation_for(quote)]
    return field


@pytest.fixture
def make_task() -> Callable[..., dict[str, Any]]:
    """Factory for raw tasks in wire format."""

    def _make(
        task_id: str,
        name: str,
        *,
        origin: str = "explicit",
        confidence: float = 0.5,
        **fields: Any,
    ) -> dict[str, Any]:
        task: dict[str, Any] = {
            "id": task_id,
            "name": name,
            "origin": origin,
            "confidence": confidence,
        }
        task.update(fields)
        return task

    return _make


@pytest.fixture
def cited_duration() -> Callable[..., dict[str, Any]]:
    """Explicit duration field citing "Vendor onboarding takes 10 days"."""

    def _make(**overrides: Any) -> dict[str, Any]:
        params: dict[str, Any] = {"unit": "days", "quote": "10 days"}
        params.update(overrides)
        return _sourced(10, **params)

    return _make


@pytest.fixture
def citation_for() -> Callable[..., dict[str, Any]]:
    """Factory for wire-format citations into the protocol document."""
    return _citation_for


@pytest.fixture
def sourced() -> Callable[..., dict[str, Any]]:
    """Factory for wire-format sourced fields."""
    return _sourced


@pytest.fixture
def now() -> datetime:
    """Fixed wall-clock time; fixture citations are retrieved at this instant."""
    return NOW


@pytest.fixture
def protocol_text() -> str:
    return PROTOCOL_TEXT


# =============================================================================
# Validated schedules
# =============================================================================


@pytest.fixture
def validate_schedule(documents, settings, now):
    """Build a schedule from wire-format tasks and run validation over it.

    Returns (schedule, ledger, service).
    """
    from claimcheck.claims import ClaimLedger
    from claimcheck.schemas import Schedule, SourceDocument, Task, build_metadata
    from claimcheck.verification import ValidationService, index_documents

    def _validate(raw_tasks: list[dict[str, Any]], *, schedule_id: str = "schedule-test"):
        tasks = [Task.model_validate(t) for t in raw_tasks]
        corpus = index_documents(SourceDocument.model_validate(d) for d in documents)
        ledger = ClaimLedger(job_id="job_test")
        service = ValidationService(corpus, settings, ledger, now=now)
        service.validate_all(tasks)
        schedule = Schedule(
            id=schedule_id,
            project_name="Device launch",
            tasks=tasks,
            metadata=build_metadata(tasks, now),
        )
        return schedule, ledger, service

    return _validate
