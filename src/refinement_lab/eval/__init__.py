"""A/B evaluation: aggregation, comparison, decision, orchestration, reporting."""

from refinement_lab.eval.aggregator import aggregate_trial_results
from refinement_lab.eval.comparator import ComparisonReport, build_comparison_report, build_task_comparisons
from refinement_lab.eval.decision import make_decision

__all__ = [
    "ComparisonReport",
    "aggregate_trial_results",
    "build_comparison_report",
    "build_task_comparisons",
    "make_decision",
]
