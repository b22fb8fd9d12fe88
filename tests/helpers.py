"""Builders for test fixtures shared across test modules."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from refinement_lab.graders.composite import grade_composite
from refinement_lab.schemas import (
    AggregatedMetrics,
    CompositeResult,
    ExperimentResult,
    GraderResult,
    PartialCreditBreakdown,
    PhaseRecord,
    PipelinePhase,
    RunReport,
    RunStatus,
    TaskComparison,
    TaskTrialResult,
    VersionManifest,
)


def make_phase(
    phase: PipelinePhase | str = PipelinePhase.RED,
    *,
    gate_result: str = "pass",
    status: str | None = None,
    retries: int = 0,
    gate_failure_reason: str | None = None,
    duration_estimate: str | None = None,
) -> PhaseRecord:
    return PhaseRecord(
        phase=PipelinePhase(phase),
        status=status or ("passed" if gate_result == "pass" else "failed"),
        retries=retries,
        gate_result=gate_result,
        gate_failure_reason=gate_failure_reason,
        duration_estimate=duration_estimate,
    )


def make_run_report(
    run_id: str = "run-1",
    *,
    timestamp: str = "2026-01-01T00:00:00Z",
    status: RunStatus = RunStatus.DONE,
    phases: list[PhaseRecord] | None = None,
    partial_credit_score: float = 1.0,
    total_tokens: int | None = None,
    guard_violations: list[dict[str, Any]] | None = None,
    fix_routing: dict[str, Any] | None = None,
) -> RunReport:
    return RunReport.model_validate(
        {
            "run_id": run_id,
            "timestamp": timestamp,
            "task_id": "task-1",
            "subtask_id": "1.1",
            "feature": "login",
            "test_type": "unit",
            "phases": [p.model_dump() for p in (phases or [])],
            "fix_routing": fix_routing or {},
            "guard_violations": guard_violations or [],
            "overall_status": status,
            "partial_credit_score": partial_credit_score,
            "total_tokens": total_tokens,
        }
    )


def make_guard_violation(*, blocked: bool = True, agent: str = "tdd-implementer") -> dict[str, Any]:
    return {
        "timestamp": "2026-01-01T00:00:00Z",
        "agent": agent,
        "attempted_action": "Edit",
        "target_file": "tests/test_login.py",
        "blocked": blocked,
        "reason": "GREEN phase may not edit tests",
    }


def make_timing_event(tool_calls_count: int, *, agent: str = "tdd-implementer") -> dict[str, Any]:
    return {
        "timestamp": "2026-01-01T00:00:00Z",
        "agent": agent,
        "phase": "GREEN",
        "started_at": "2026-01-01T00:00:00Z",
        "finished_at": "2026-01-01T00:01:00Z",
        "tool_calls_count": tool_calls_count,
    }


def make_aggregated_metrics(**overrides: Any) -> AggregatedMetrics:
    return AggregatedMetrics(**overrides)


def make_composite(
    score: float,
    *,
    progression: float = 1.0,
    guard_score: float | None = None,
) -> CompositeResult:
    """A composite result whose final score is exactly *score*."""
    individual: dict[str, GraderResult] = {}
    if guard_score is not None:
        individual["guard_compliance"] = GraderResult(
            grader="GuardComplianceGrader",
            score=guard_score,
            passed=guard_score == 1.0,
        )
    return CompositeResult(
        passed=score >= 0.5,
        individual_scores=individual,
        partial_credit=PartialCreditBreakdown(
            phases_completed=6,
            phases_total=6,
            phase_progression_score=progression,
            grader_ensemble_score=score,
            final_score=score,
        ),
    )


def make_trial(
    task_id: str,
    trial: int,
    score: float,
    *,
    duration_ms: float = 1000.0,
    progression: float = 1.0,
    guard_score: float | None = None,
    total_tokens: int = 0,
) -> TaskTrialResult:
    return TaskTrialResult(
        task_id=task_id,
        trial=trial,
        composite_result=make_composite(score, progression=progression, guard_score=guard_score),
        duration_ms=duration_ms,
        total_tokens=total_tokens,
    )


def make_comparison(task_id: str, control: float, variant: float, *, regression: bool | None = None) -> TaskComparison:
    delta = variant - control
    return TaskComparison(
        task_id=task_id,
        control_outcome="pass" if control >= 0.5 else "fail",
        variant_outcome="pass" if variant >= 0.5 else "fail",
        control_score=control,
        variant_score=variant,
        delta=delta,
        regression=delta < -0.05 if regression is None else regression,
    )


def make_manifest(dataset_version: str = "v1") -> VersionManifest:
    return VersionManifest(
        agent_prompts_hash="a" * 64,
        skill_hash="b" * 64,
        hooks_hash="c" * 64,
        settings_hash="d" * 64,
        dataset_version=dataset_version,
    )


def make_experiment(
    experiment_id: str = "exp-2026-01-01-abcdef12",
    *,
    timestamp: str = "2026-01-01T12:00:00+00:00",
    control: AggregatedMetrics | None = None,
    variant: AggregatedMetrics | None = None,
    comparisons: list[TaskComparison] | None = None,
    decision: str = "accept",
    rationale: str = "Accepted: all key metrics (tsr, pass_at_1, code_quality_score) are >= control with zero task regressions",
    hypothesis: str = "Stricter RED prompt improves test quality",
) -> ExperimentResult:
    return ExperimentResult.model_validate(
        {
            "experiment_id": experiment_id,
            "timestamp": timestamp,
            "hypothesis": hypothesis,
            "variant_description": "prompt tweak",
            "dataset_version": "v1",
            "control_config": make_manifest(),
            "variant_config": make_manifest(),
            "control_results": control or AggregatedMetrics(tsr=0.8, pass_at_1=0.7, code_quality_score=0.75),
            "variant_results": variant or AggregatedMetrics(tsr=0.9, pass_at_1=0.8, code_quality_score=0.85),
            "per_task_comparison": comparisons or [],
            "decision": decision,
            "decision_rationale": rationale,
        }
    )


def make_task_record(task_id: str = "task-1", **overrides: Any) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": task_id,
        "description": f"Implement {task_id}",
        "parent_task": "auth",
        "subtask_index": 1,
        "test_type": "unit",
        "acceptance": {
            "tests_must_fail_initially": True,
            "tests_must_pass_after_green": True,
            "no_test_modifications_in_green": True,
            "static_analysis_clean": True,
            "architecture_check": "no new dependencies",
        },
        "reference_solution": "def login(): ...",
        "graders": ["test_runner"],
        "difficulty": "easy",
    }
    record.update(overrides)
    return record


def write_json(path: Path, payload: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if hasattr(payload, "model_dump_json"):
        path.write_text(payload.model_dump_json(), encoding="utf-8")
    else:
        path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def write_jsonl(path: Path, records: list[Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [json.dumps(r) if not isinstance(r, str) else r for r in records]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def grade(weights: dict[str, float], scores: dict[str, float], completed: int, total: int = 6) -> CompositeResult:
    results = {
        name: GraderResult(grader=name, score=value, passed=value >= 0.5)
        for name, value in scores.items()
    }
    return grade_composite(weights, results, completed, total)
