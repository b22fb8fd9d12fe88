"""Check KPIs against the configured pipeline targets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from refinement_lab.config import ThresholdsConfig
from refinement_lab.metrics.pipeline import PipelineKpis
from refinement_lab.schemas import AggregatedMetrics

ViolationType = Literal["min_not_met", "max_exceeded"]

# (metric attribute, threshold attribute, kind)
_CHECKS: tuple[tuple[str, str, ViolationType], ...] = (
    ("tsr", "tsr_target", "min_not_met"),
    ("pass_at_1", "pass_at_1_target", "min_not_met"),
    ("pass_3", "pass_3_target", "min_not_met"),
    ("code_quality_score", "code_quality_score_target", "min_not_met"),
    ("gate_failure_rate", "gate_failure_rate_max_per_phase", "max_exceeded"),
    ("guard_violations", "guard_violations_max", "max_exceeded"),
)


@dataclass(frozen=True, slots=True)
class ThresholdViolation:
    metric: str
    actual: float
    expected: float
    violation_type: ViolationType


def compare_to_thresholds(
    metrics: AggregatedMetrics | PipelineKpis,
    thresholds: ThresholdsConfig,
) -> list[ThresholdViolation]:
    """List every KPI outside its target.

    Metrics the input does not carry (pass@3 for run-derived KPIs) are not checked.
    """
    kpis = thresholds.pipeline_kpis
    violations: list[ThresholdViolation] = []
    for metric, target_name, kind in _CHECKS:
        actual = getattr(metrics, metric, None)
        if actual is None:
            continue
        expected = getattr(kpis, target_name)
        failed = actual < expected if kind == "min_not_met" else actual > expected
        if failed:
            violations.append(ThresholdViolation(metric, actual, expected, kind))
    return violations
