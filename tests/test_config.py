"""
Tests for configuration loading and logging setup.

Test Perspectives Table:
| Case ID    | Input / Precondition                          | Perspective              | Expected Result                              | Notes          |
|------------|-----------------------------------------------|--------------------------|----------------------------------------------|----------------|
| TC-N-01    | No files, no env                              | Normal                   | Documented defaults                          | -              |
| TC-N-02    | settings.yaml + local.yaml                    | Normal                   | local.yaml overrides settings.yaml           | -              |
| TC-N-03    | CLAIMCHECK_SECTION__KEY env vars              | Normal                   | Env wins over YAML, values typed             | -              |
| TC-N-04    | Shipped config/settings.yaml                  | Normal                   | Matches model defaults                       | -              |
| TC-N-05    | LogContext                                    | Normal                   | Context bound inside, removed after          | -              |
| TC-N-06    | Nested LogContext with a rebind inside        | Normal                   | Outer values restored on exit                | -              |
| TC-A-01    | Assign to a settings field                    | Abnormal - frozen        | ValidationError                              | -              |
| TC-A-02    | Unknown key in YAML                           | Abnormal                 | ValidationError                              | -              |
| TC-A-03    | Threshold outside [0, 1]                      | Boundary                 | ValidationError                              | -              |
"""

import os
from pathlib import Path

import pytest
import structlog
import yaml
from pydantic import ValidationError

from claimcheck.utils import LogContext, bind_context, configure_logging, get_logger
from claimcheck.utils.config import Settings, ValidationConfig, load_settings

pytestmark = pytest.mark.unit


@pytest.fixture
def clean_env(monkeypatch):
    """Remove CLAIMCHECK_ overrides other than the config dir."""
    for key in list(os.environ):
        if key.startswith("CLAIMCHECK_") and key != "CLAIMCHECK_CONFIG_DIR":
            monkeypatch.delenv(key)
    return monkeypatch


def _write_yaml(path: Path, data: dict) -> None:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults(self, tmp_path, clean_env) -> None:
        """TC-N-01: An empty config dir gives model defaults."""
        settings = load_settings(tmp_path)
        assert settings.validation.citation_coverage_threshold == 0.75
        assert settings.repair.max_repair_attempts == 3
        assert settings.contradiction.temporal_tolerance_days == 30
        assert settings.provenance.weights.verification == 0.5

    def test_local_overrides(self, tmp_path, clean_env) -> None:
        """TC-N-02: local.yaml settings override settings.yaml."""
        # Given: Base and local files
        _write_yaml(tmp_path / "settings.yaml", {"repair": {"max_repair_attempts": 5}})
        _write_yaml(
            tmp_path / "local.yaml",
            {"settings": {"repair": {"confidence_boost": 0.2}, "pipeline": {"job_timeout_seconds": 10}}},
        )

        # When: Load
        settings = load_settings(tmp_path)

        # Then: Merged, not replaced
        assert settings.repair.max_repair_attempts == 5
        assert settings.repair.confidence_boost == 0.2
        assert settings.pipeline.job_timeout_seconds == 10

    def test_env_overrides(self, tmp_path, clean_env) -> None:
        """TC-N-03: Environment variables win and are typed."""
        # Given: YAML and conflicting env vars
        _write_yaml(tmp_path / "settings.yaml", {"repair": {"max_repair_attempts": 5}})
        clean_env.setenv("CLAIMCHECK_REPAIR__MAX_REPAIR_ATTEMPTS", "1")
        clean_env.setenv("CLAIMCHECK_VALIDATION__CITATION_COVERAGE_THRESHOLD", "0.8")
        clean_env.setenv("CLAIMCHECK_GENERATOR__BASE_URL", "http://generator:9000")

        # When: Load
        settings = load_settings(tmp_path)

        # Then: Env values applied
        assert settings.repair.max_repair_attempts == 1
        assert settings.validation.citation_coverage_threshold == 0.8
        assert settings.generator.base_url == "http://generator:9000"

    def test_shipped_settings_match_defaults(self, clean_env) -> None:
        """TC-N-04: The shipped settings.yaml restates the defaults."""
        config_dir = Path(__file__).parent.parent / "config"
        assert load_settings(config_dir) == Settings()

    def test_frozen(self) -> None:
        """TC-A-01: Settings cannot change after construction."""
        settings = Settings()
        with pytest.raises(ValidationError):
            settings.repair = None

    def test_unknown_key(self, tmp_path, clean_env) -> None:
        """TC-A-02: Typos in YAML are rejected."""
        _write_yaml(tmp_path / "settings.yaml", {"repair": {"max_attempts": 5}})
        with pytest.raises(ValidationError):
            load_settings(tmp_path)

    def test_threshold_range(self) -> None:
        """TC-A-03: Coverage threshold is a fraction."""
        with pytest.raises(ValidationError):
            ValidationConfig(citation_coverage_threshold=1.5)


class TestLogging:
    """Tests for structured logging helpers."""

    def test_log_context(self) -> None:
        """TC-N-05: Context is scoped to the with-block."""
        # Given/When: Inside a LogContext
        with LogContext(job_id="job_ctx", step="gating"):
            inside = structlog.contextvars.get_contextvars()

        # Then: Bound inside, gone after
        assert inside["job_id"] == "job_ctx"
        assert inside["step"] == "gating"
        assert "job_id" not in structlog.contextvars.get_contextvars()

    def test_nested_log_context(self) -> None:
        """TC-N-06: A nested context restores the outer values on exit."""
        # Given: An outer job context
        with LogContext(job_id="job_outer", step="validating"):
            # When: An inner context rebinds step, then the block rebinds it again
            with LogContext(step="repairing"):
                bind_context(step="finalizing")
                inner = structlog.contextvars.get_contextvars()
            outer = structlog.contextvars.get_contextvars()

        # Then: Inner values were visible; outer values are back afterwards
        assert (inner["job_id"], inner["step"]) == ("job_outer", "finalizing")
        assert (outer["job_id"], outer["step"]) == ("job_outer", "validating")
        assert "step" not in structlog.contextvars.get_contextvars()

    def test_configure_logging(self, tmp_path) -> None:
        """configure_logging installs the structlog pipeline."""
        try:
            configure_logging(log_level="DEBUG", log_file=tmp_path / "claimcheck.log")
            assert structlog.is_configured()
            get_logger("claimcheck.test").info("Configured", check=True)
        finally:
            structlog.reset_defaults()
