"""Reduce per-task, per-trial results into branch-level KPIs."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence

from refinement_lab.graders.composite import PASS_THRESHOLD
from refinement_lab.schemas import AggregatedMetrics, TaskTrialResult

logger = logging.getLogger(__name__)

GUARD_COMPLIANCE_GRADER = "guard_compliance"


def median(values: Sequence[float]) -> float:
    """Standard median; the two middle values are averaged for even counts. 0 when empty."""
    if not values:
        return 0.0
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 1:
        return float(ordered[mid])
    return (ordered[mid - 1] + ordered[mid]) / 2


def group_by_task(results: Sequence[TaskTrialResult]) -> dict[str, list[TaskTrialResult]]:
    grouped: dict[str, list[TaskTrialResult]] = defaultdict(list)
    for result in results:
        grouped[result.task_id].append(result)
    return dict(grouped)


def aggregate_trial_results(
    results: Sequence[TaskTrialResult],
    task_count: int,
    trials: int = 1,
) -> AggregatedMetrics:
    """Compute branch KPIs from a flat list of trial results.

    Task-level rates (tsr, pass@1, pass@3) divide by *task_count*; quality,
    cycle time, and gate failure rate are flat over all trial results.
    Empty input or zero tasks yields all-zero metrics.
    """
    if not results or task_count <= 0:
        return AggregatedMetrics()

    tsr_count = 0
    pass_at_1_count = 0
    pass_3_count = 0
    for task_results in group_by_task(results).values():
        best = max(r.composite_result.overall_score for r in task_results)
        if best >= PASS_THRESHOLD:
            tsr_count += 1
        first = next((r for r in task_results if r.trial == 0), None)
        if first is not None and first.composite_result.passed:
            pass_at_1_count += 1
        if any(r.composite_result.passed for r in task_results):
            pass_3_count += 1

    n = len(results)
    quality = sum(r.composite_result.overall_score for r in results) / n
    progression = sum(r.composite_result.partial_credit.phase_progression_score for r in results) / n
    guard_violations = sum(
        1
        for r in results
        if GUARD_COMPLIANCE_GRADER in r.composite_result.individual_scores
        and r.composite_result.individual_scores[GUARD_COMPLIANCE_GRADER].score == 0
    )
    metrics = AggregatedMetrics(
        tsr=min(1.0, tsr_count / task_count),
        pass_at_1=min(1.0, pass_at_1_count / task_count),
        pass_3=min(1.0, pass_3_count / task_count),
        code_quality_score=_unit(quality),
        total_tokens=sum(r.total_tokens for r in results) / n,
        median_cycle_time=median([r.duration_ms for r in results]),
        gate_failure_rate=_unit(1 - progression),
        guard_violations=guard_violations,
    )
    logger.debug(
        "Aggregated %d trial results over %d tasks (%d trials each): tsr=%.3f pass@1=%.3f",
        n,
        task_count,
        trials,
        metrics.tsr,
        metrics.pass_at_1,
    )
    return metrics


def _unit(value: float) -> float:
    return max(0.0, min(1.0, value))
