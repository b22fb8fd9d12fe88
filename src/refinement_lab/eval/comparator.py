"""Per-task control/variant comparison and the comparison report."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from refinement_lab.schemas import (
    METRIC_KEYS,
    AggregatedMetrics,
    ExperimentResult,
    TaskComparison,
    TaskOutcome,
    TaskTrialResult,
)

logger = logging.getLogger(__name__)

OUTCOME_PASS_THRESHOLD = 0.5
OUTCOME_FAIL_THRESHOLD = 0.25
REGRESSION_TOLERANCE = -0.05
# Deltas are rounded before the tolerance check so float noise at exactly
# -0.05 does not count as a regression.
DELTA_ROUND_DIGITS = 10


def classify_outcome(
    score: float,
    *,
    pass_threshold: float = OUTCOME_PASS_THRESHOLD,
    fail_threshold: float = OUTCOME_FAIL_THRESHOLD,
) -> TaskOutcome:
    if score >= pass_threshold:
        return "pass"
    if score < fail_threshold:
        return "fail"
    return "partial"


def best_scores(results: Sequence[TaskTrialResult]) -> dict[str, float]:
    """Best overall score per task id, keeping first-seen task order."""
    best: dict[str, float] = {}
    for result in results:
        score = result.composite_result.overall_score
        if result.task_id not in best or score > best[result.task_id]:
            best[result.task_id] = score
    return best


def is_regression(delta: float, *, tolerance: float = REGRESSION_TOLERANCE) -> bool:
    return round(delta, DELTA_ROUND_DIGITS) < tolerance


def build_task_comparisons(
    control_results: Sequence[TaskTrialResult],
    variant_results: Sequence[TaskTrialResult],
    *,
    regression_tolerance: float = REGRESSION_TOLERANCE,
) -> list[TaskComparison]:
    """Compare the best trial of each task on both branches.

    A task seen on only one side scores 0 on the other.
    """
    control_best = best_scores(control_results)
    variant_best = best_scores(variant_results)
    task_ids = list(control_best)
    task_ids.extend(task_id for task_id in variant_best if task_id not in control_best)

    comparisons: list[TaskComparison] = []
    for task_id in task_ids:
        control_score = control_best.get(task_id, 0.0)
        variant_score = variant_best.get(task_id, 0.0)
        delta = variant_score - control_score
        comparisons.append(
            TaskComparison(
                task_id=task_id,
                control_outcome=classify_outcome(control_score),
                variant_outcome=classify_outcome(variant_score),
                control_score=control_score,
                variant_score=variant_score,
                delta=delta,
                regression=is_regression(delta, tolerance=regression_tolerance),
            )
        )
    regressions = sum(1 for c in comparisons if c.regression)
    logger.debug("Compared %d tasks; %d regression(s)", len(comparisons), regressions)
    return comparisons


@dataclass
class ComparisonReport:
    experiment_id: str
    control_metrics: AggregatedMetrics
    variant_metrics: AggregatedMetrics
    deltas: dict[str, float] = field(default_factory=dict)
    regressions: list[TaskComparison] = field(default_factory=list)
    improvements: list[TaskComparison] = field(default_factory=list)
    unchanged: list[TaskComparison] = field(default_factory=list)
    net_assessment: str = ""


def metric_deltas(control: AggregatedMetrics, variant: AggregatedMetrics) -> dict[str, float]:
    return {key: getattr(variant, key) - getattr(control, key) for key in METRIC_KEYS}


def build_comparison_report(result: ExperimentResult) -> ComparisonReport:
    """Split the per-task comparison into regressions, improvements, and unchanged tasks."""
    comparisons = result.per_task_comparison
    return ComparisonReport(
        experiment_id=result.experiment_id,
        control_metrics=result.control_results,
        variant_metrics=result.variant_results,
        deltas=metric_deltas(result.control_results, result.variant_results),
        regressions=[c for c in comparisons if c.regression],
        improvements=[c for c in comparisons if not c.regression and c.delta > 0],
        unchanged=[c for c in comparisons if not c.regression and c.delta <= 0],
        net_assessment=f"{result.decision.value.upper()}: {result.decision_rationale}",
    )
