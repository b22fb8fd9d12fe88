"""Tests for per-task comparison and the comparison report."""

from __future__ import annotations

import pytest

from helpers import make_comparison, make_experiment, make_trial
from refinement_lab.eval.comparator import (
    build_comparison_report,
    build_task_comparisons,
    classify_outcome,
    is_regression,
)
from refinement_lab.schemas import AggregatedMetrics

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("score", "outcome"),
    [(0.5, "pass"), (0.9, "pass"), (0.49, "partial"), (0.25, "partial"), (0.24, "fail"), (0.0, "fail")],
)
def test_classify_outcome(score: float, outcome: str) -> None:
    assert classify_outcome(score) == outcome


def test_uses_best_trial_per_side() -> None:
    control = [make_trial("t1", 0, 0.2), make_trial("t1", 1, 0.6)]
    variant = [make_trial("t1", 0, 0.9), make_trial("t1", 1, 0.1)]
    [comparison] = build_task_comparisons(control, variant)
    assert comparison.control_score == 0.6
    assert comparison.variant_score == 0.9
    assert comparison.delta == pytest.approx(0.3)
    assert comparison.regression is False


def test_delta_of_exactly_minus_five_hundredths_is_not_a_regression() -> None:
    [comparison] = build_task_comparisons([make_trial("t1", 0, 0.80)], [make_trial("t1", 0, 0.75)])
    assert comparison.regression is False


def test_delta_just_past_tolerance_is_a_regression() -> None:
    [comparison] = build_task_comparisons([make_trial("t1", 0, 0.80)], [make_trial("t1", 0, 0.749999)])
    assert comparison.regression is True
    assert comparison.control_outcome == "pass"
    assert comparison.variant_outcome == "partial"


def test_tolerance_is_tunable() -> None:
    assert is_regression(-0.03, tolerance=-0.01) is True
    [comparison] = build_task_comparisons(
        [make_trial("t1", 0, 0.8)], [make_trial("t1", 0, 0.7)], regression_tolerance=-0.2
    )
    assert comparison.regression is False


def test_task_missing_on_one_side_scores_zero_there() -> None:
    comparisons = build_task_comparisons([make_trial("t1", 0, 0.8)], [make_trial("t2", 0, 0.7)])
    by_id = {c.task_id: c for c in comparisons}
    assert [c.task_id for c in comparisons] == ["t1", "t2"]
    assert by_id["t1"].variant_score == 0.0
    assert by_id["t1"].regression is True
    assert by_id["t2"].control_score == 0.0
    assert by_id["t2"].control_outcome == "fail"


def test_comparison_report_splits_tasks() -> None:
    experiment = make_experiment(
        control=AggregatedMetrics(tsr=0.5, guard_violations=2),
        variant=AggregatedMetrics(tsr=0.75, guard_violations=1),
        comparisons=[
            make_comparison("regressed", 0.9, 0.5),
            make_comparison("improved", 0.4, 0.8),
            make_comparison("same", 0.6, 0.6),
            make_comparison("slightly-worse", 0.6, 0.58),
        ],
        decision="accept_with_caveat",
        rationale="Accepted with caveat",
    )

    report = build_comparison_report(experiment)

    assert [c.task_id for c in report.regressions] == ["regressed"]
    assert [c.task_id for c in report.improvements] == ["improved"]
    assert [c.task_id for c in report.unchanged] == ["same", "slightly-worse"]
    assert report.deltas["tsr"] == pytest.approx(0.25)
    assert report.deltas["guard_violations"] == -1
    assert len(report.deltas) == 8
    assert report.net_assessment == "ACCEPT_WITH_CAVEAT: Accepted with caveat"
