"""Trigger, threshold, and grader configuration.

Configuration files are YAML (JSON is accepted too, being a YAML subset).
Every section has defaults so an empty file loads as a valid config.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

WEIGHT_SUM_TOLERANCE = 0.01

DEFAULT_GRADER_WEIGHTS: dict[str, float] = {
    "test_runner": 0.30,
    "static_analysis": 0.15,
    "test_mutation": 0.15,
    "guard_compliance": 0.10,
    "llm_test_quality": 0.10,
    "llm_impl_minimality": 0.10,
    "llm_doc_completeness": 0.10,
}


class ConfigLoadError(RuntimeError):
    """Raised when a configuration file cannot be read, parsed, or validated."""


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------

class CountRuleConfig(BaseModel):
    threshold: int = Field(default=1, ge=1)
    description: str = ""


class TokenAnomalyConfig(BaseModel):
    sigma_threshold: float = Field(default=2.0, gt=0)
    description: str = "Token usage anomaly detected"


class WindowRuleConfig(BaseModel):
    threshold_percent: float = Field(default=10.0, ge=0)
    window_runs: int = Field(default=20, ge=1)
    description: str = ""


class EventDrivenConfig(BaseModel):
    guard_violation: CountRuleConfig = Field(
        default_factory=lambda: CountRuleConfig(
            threshold=1,
            description="Any guard violation triggers immediate investigation",
        )
    )
    gate_failure_streak: CountRuleConfig = Field(
        default_factory=lambda: CountRuleConfig(
            threshold=3,
            description="Consecutive gate failures in the same phase",
        )
    )
    token_anomaly: TokenAnomalyConfig = Field(default_factory=TokenAnomalyConfig)
    manual_intervention_streak: CountRuleConfig = Field(
        default_factory=lambda: CountRuleConfig(
            threshold=2,
            description="Consecutive runs escalated to a human",
        )
    )


class TrendBasedConfig(BaseModel):
    tsr_drop: WindowRuleConfig = Field(
        default_factory=lambda: WindowRuleConfig(
            threshold_percent=5, description="Task success rate dropped below baseline"
        )
    )
    token_inflation: WindowRuleConfig = Field(
        default_factory=lambda: WindowRuleConfig(
            threshold_percent=10, description="Average token usage grew over baseline"
        )
    )
    flake_rate: WindowRuleConfig = Field(
        default_factory=lambda: WindowRuleConfig(
            threshold_percent=2, description="Share of partially-passing runs is too high"
        )
    )


class CommitBasedConfig(BaseModel):
    watched_paths: list[str] = Field(
        default_factory=lambda: [".claude/agents/*", ".claude/skills/**", ".claude/hooks/*"]
    )
    action: str = "subset_eval"
    subset_size: int = Field(default=10, ge=0)
    block_if: str = "any Layer-1 metric below threshold"


class TriggerRulesConfig(BaseModel):
    event_driven: EventDrivenConfig = Field(default_factory=EventDrivenConfig)
    trend_based: TrendBasedConfig = Field(default_factory=TrendBasedConfig)
    commit_based: CommitBasedConfig = Field(default_factory=CommitBasedConfig)


class TriggersConfig(BaseModel):
    """Top-level triggers file: ``auto_refinement_triggers: {...}``."""

    auto_refinement_triggers: TriggerRulesConfig = Field(default_factory=TriggerRulesConfig)


# ---------------------------------------------------------------------------
# KPI thresholds
# ---------------------------------------------------------------------------

class PipelineKpiThresholds(BaseModel):
    tsr_target: float = Field(default=0.8, ge=0, le=1)
    pass_at_1_target: float = Field(default=0.6, ge=0, le=1)
    pass_3_target: float = Field(default=0.9, ge=0, le=1)
    code_quality_score_target: float = Field(default=0.7, ge=0, le=1)
    gate_failure_rate_max_per_phase: float = Field(default=0.2, ge=0, le=1)
    guard_violations_max: int = Field(default=0, ge=0)


class ThresholdsConfig(BaseModel):
    pipeline_kpis: PipelineKpiThresholds = Field(default_factory=PipelineKpiThresholds)


# ---------------------------------------------------------------------------
# Grading
# ---------------------------------------------------------------------------

class GraderConfig(BaseModel):
    """Weights of the grader ensemble; they must sum to 1.0."""

    model_config = ConfigDict(frozen=True)

    weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_GRADER_WEIGHTS))

    @field_validator("weights")
    @classmethod
    def _validate_weights(cls, value: dict[str, float]) -> dict[str, float]:
        validate_weights(value)
        return value


def validate_weights(weights: dict[str, float]) -> None:
    """Raise ``ValueError`` unless *weights* are non-negative and sum to 1.0 (+/- 0.01)."""
    negative = sorted(name for name, weight in weights.items() if weight < 0)
    if negative:
        raise ValueError(f"Grader weights must be non-negative: {', '.join(negative)}")
    total = sum(weights.values())
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        raise ValueError(f"Grader weights must sum to 1.0, got {total:.4f}")


# ---------------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------------

def _read_mapping(path: Path, kind: str) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigLoadError(f"Failed to load {kind} config: {path}: {exc}") from exc
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigLoadError(f"Invalid {kind} config: {path}: top level must be a mapping")
    return raw


def load_triggers_config(path: str | Path) -> TriggersConfig:
    """Load and validate a triggers config file."""
    path = Path(path)
    data = _read_mapping(path, "triggers")
    try:
        config = TriggersConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigLoadError(f"Invalid triggers config schema: {path}: {exc}") from exc
    logger.debug("Loaded triggers config from %s", path)
    return config


def load_thresholds_config(path: str | Path) -> ThresholdsConfig:
    """Load and validate a KPI thresholds config file."""
    path = Path(path)
    data = _read_mapping(path, "thresholds")
    try:
        config = ThresholdsConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigLoadError(f"Invalid thresholds config schema: {path}: {exc}") from exc
    logger.debug("Loaded thresholds config from %s", path)
    return config


def load_grader_config(path: str | Path) -> GraderConfig:
    """Load grader weights from a config file."""
    path = Path(path)
    data = _read_mapping(path, "grader")
    try:
        return GraderConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigLoadError(f"Invalid grader config schema: {path}: {exc}") from exc
