"""Tests for the pydantic data model."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from helpers import make_composite, make_experiment, make_run_report
from refinement_lab.schemas import (
    METRIC_KEYS,
    PIPELINE_PHASES,
    TOTAL_PIPELINE_PHASES,
    AggregatedMetrics,
    GraderResult,
    PipelinePhase,
    RunReport,
)


def test_pipeline_phases_are_in_execution_order() -> None:
    assert [p.value for p in PIPELINE_PHASES] == [
        "RED",
        "GREEN",
        "REFACTOR",
        "CODE_REVIEW",
        "ARCH_REVIEW",
        "DOCS",
    ]
    assert TOTAL_PIPELINE_PHASES == 6


def test_run_report_rejects_partial_credit_outside_unit_interval() -> None:
    with pytest.raises(ValidationError):
        make_run_report(partial_credit_score=1.5)


def test_run_report_rejects_unknown_status() -> None:
    with pytest.raises(ValidationError):
        RunReport.model_validate(
            {
                "run_id": "r",
                "timestamp": "2026-01-01T00:00:00Z",
                "task_id": "t",
                "subtask_id": "s",
                "feature": "f",
                "test_type": "unit",
                "overall_status": "MAYBE",
                "partial_credit_score": 0.5,
            }
        )


def test_run_report_is_immutable() -> None:
    report = make_run_report()
    with pytest.raises(ValidationError):
        report.run_id = "other"  # type: ignore[misc]


def test_overall_score_always_equals_final_score() -> None:
    composite = make_composite(0.42)
    assert composite.overall_score == composite.partial_credit.final_score
    dumped = composite.model_dump()
    assert dumped["overall_score"] == pytest.approx(0.42)


def test_grader_result_score_range_is_enforced() -> None:
    with pytest.raises(ValidationError):
        GraderResult(grader="x", score=-0.1, passed=False)


def test_aggregated_metrics_defaults_to_all_zero() -> None:
    metrics = AggregatedMetrics()
    assert all(getattr(metrics, key) == 0 for key in METRIC_KEYS)
    assert METRIC_KEYS == (
        "tsr",
        "pass_at_1",
        "pass_3",
        "code_quality_score",
        "total_tokens",
        "median_cycle_time",
        "gate_failure_rate",
        "guard_violations",
    )


def test_aggregated_metrics_rejects_rate_above_one() -> None:
    with pytest.raises(ValidationError):
        AggregatedMetrics(tsr=1.2)


def test_experiment_result_round_trips_through_json() -> None:
    experiment = make_experiment()
    restored = type(experiment).model_validate_json(experiment.model_dump_json())
    assert restored == experiment
    assert restored.decision.value == "accept"


def test_phase_record_accepts_string_phase() -> None:
    report = make_run_report(phases=[])
    assert report.phases == []
    assert PipelinePhase("GREEN") is PipelinePhase.GREEN
