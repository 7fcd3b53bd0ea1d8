"""
Configuration management for ClaimCheck.
Loads and validates settings from YAML files and environment variables.

Settings are frozen once built: an Orchestrator keeps the instance it was
constructed with for its whole lifetime.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field


class ValidationConfig(BaseModel):
    """Coverage and confidence thresholds used by the quality gates."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    citation_coverage_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    min_confidence_threshold: float = Field(default=0.5, ge=0.0, le=1.0)


class ContradictionConfig(BaseModel):
    """Contradiction detection tolerances.

    numerical_noise / numerical_high are relative differences:
    below noise is ignored, above high is a high-severity conflict.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    numerical_noise: float = Field(default=0.10, ge=0.0)
    numerical_high: float = Field(default=0.30, ge=0.0)
    temporal_tolerance_days: int = Field(default=30, ge=0)
    definitional_similarity_threshold: float = Field(default=0.3, ge=0.0, le=1.0)


class ProvenanceWeights(BaseModel):
    """Weights of the three provenance factors (should sum to 1.0)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    completeness: float = 0.3
    verification: float = 0.5
    freshness: float = 0.2


class ProvenanceConfig(BaseModel):
    """Provenance audit configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    max_citation_age_days: int = Field(default=365, ge=1)
    weights: ProvenanceWeights = Field(default_factory=ProvenanceWeights)


class CalibrationConfig(BaseModel):
    """Additive confidence adjustments applied by the calibrator."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    high_coverage: float = 0.9
    low_coverage: float = 0.5
    high_coverage_bonus: float = 0.10
    low_coverage_penalty: float = -0.15
    high_contradiction_penalty: float = -0.20
    low_provenance_penalty: float = -0.10
    explicit_origin_bonus: float = 0.05


class RepairConfig(BaseModel):
    """Repair loop configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_repair_attempts: int = Field(default=3, ge=0)
    confidence_boost: float = Field(default=0.05, ge=0.0, le=1.0)
    loser_penalty: float = Field(default=0.10, ge=0.0, le=1.0)


class PipelineConfig(BaseModel):
    """Per-job processing limits."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    job_timeout_seconds: float = Field(default=300.0, gt=0)


class GeneratorConfig(BaseModel):
    """Upstream schedule generator (HTTP) configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = "http://localhost:8090"
    endpoint: str = "/generate"
    timeout: float = 120.0
    max_retries: int = Field(default=3, ge=1)
    retry_delay: float = 1.0


class GeneralConfig(BaseModel):
    """General configuration."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    project_name: str = "claimcheck"
    log_level: str = "INFO"
    logs_dir: str = "logs"


class Settings(BaseModel):
    """Main settings container."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    contradiction: ContradictionConfig = Field(default_factory=ContradictionConfig)
    provenance: ProvenanceConfig = Field(default_factory=ProvenanceConfig)
    calibration: CalibrationConfig = Field(default_factory=CalibrationConfig)
    repair: RepairConfig = Field(default_factory=RepairConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    generator: GeneratorConfig = Field(default_factory=GeneratorConfig)


ENV_PREFIX = "CLAIMCHECK_"
CONFIG_DIR_ENV = "CLAIMCHECK_CONFIG_DIR"


def _merge_into(target: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``overrides`` into a copy of ``target``."""
    merged = dict(target)
    for key, value in overrides.items():
        current = merged.get(key)
        merged[key] = (
            _merge_into(current, value)
            if isinstance(current, dict) and isinstance(value, dict)
            else value
        )
    return merged


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    return data if isinstance(data, dict) else {}


def _env_value(raw: str) -> Any:
    """Type an environment value the way YAML would ("3" -> 3, "true" -> True).

    Anything that does not parse to a scalar stays a string.
    """
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw
    if parsed is None or isinstance(parsed, (dict, list)):
        return raw
    return parsed


def _env_overrides() -> dict[str, Any]:
    """Nested overrides from CLAIMCHECK_<SECTION>__<KEY> variables.

    Example:
        CLAIMCHECK_REPAIR__MAX_REPAIR_ATTEMPTS=5
    """
    overrides: dict[str, Any] = {}
    for name, raw in os.environ.items():
        if not name.startswith(ENV_PREFIX) or name == CONFIG_DIR_ENV:
            continue
        *sections, key = name[len(ENV_PREFIX) :].lower().split("__")
        node = overrides
        for section in sections:
            node = node.setdefault(section, {})
        node[key] = _env_value(raw)
    return overrides


def load_settings(config_dir: Path | str | None = None) -> Settings:
    """Build a fresh Settings instance.

    Later sources win:
    1. Model defaults
    2. ``settings.yaml`` in the config directory
    3. The ``settings:`` section of ``local.yaml`` (machine-specific)
    4. CLAIMCHECK_* environment variables

    Args:
        config_dir: Configuration directory. Uses CLAIMCHECK_CONFIG_DIR,
            then ``config``, if None.

    Raises:
        pydantic.ValidationError: Unknown keys or out-of-range values.
    """
    config_dir = Path(config_dir or os.environ.get(CONFIG_DIR_ENV, "config"))

    config = _read_yaml(config_dir / "settings.yaml")
    local = _read_yaml(config_dir / "local.yaml").get("settings") or {}
    config = _merge_into(config, local)
    config = _merge_into(config, _env_overrides())
    return Settings.model_validate(config)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, loaded on first use."""
    return load_settings()


def get_project_root() -> Path:
    """Repository root (the directory holding ``claimcheck/``)."""
    return Path(__file__).resolve().parents[2]
