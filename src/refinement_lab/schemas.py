"""Pydantic models for pipeline telemetry, grading, and A/B experiment records."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

TestType = Literal["unit", "integration", "both"]
Difficulty = Literal["easy", "medium", "hard", "adversarial"]
TaskOutcome = Literal["pass", "fail", "partial"]


def _utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Run telemetry
# ---------------------------------------------------------------------------

class PipelinePhase(str, Enum):
    """The phases of the TDD development pipeline, in execution order."""

    RED = "RED"
    GREEN = "GREEN"
    REFACTOR = "REFACTOR"
    CODE_REVIEW = "CODE_REVIEW"
    ARCH_REVIEW = "ARCH_REVIEW"
    DOCS = "DOCS"


PIPELINE_PHASES: tuple[PipelinePhase, ...] = tuple(PipelinePhase)
TOTAL_PIPELINE_PHASES = len(PIPELINE_PHASES)


class RunStatus(str, Enum):
    """Terminal status of a pipeline run."""

    DONE = "DONE"
    FAILED = "FAILED"
    ESCALATED = "ESCALATED"


class PhaseRecord(BaseModel):
    """One phase inside a pipeline run."""

    model_config = ConfigDict(frozen=True)

    phase: PipelinePhase
    status: Literal["passed", "failed", "skipped"]
    retries: int = Field(default=0, ge=0)
    gate_result: Literal["pass", "fail"]
    gate_failure_reason: str | None = None
    changed_files: list[str] = Field(default_factory=list)
    duration_estimate: str | None = None  # "<int>[s|m|h]", seconds when unitless


class EscalationEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: str
    reason: str
    fix_request_id: str | None = None


class FixRoutingRecord(BaseModel):
    """Review-fix cycle counts and escalations for one run."""

    model_config = ConfigDict(frozen=True)

    code_review_cycles: int = Field(default=0, ge=0)
    arch_review_cycles: int = Field(default=0, ge=0)
    escalations: list[EscalationEvent] = Field(default_factory=list)


class GuardViolationEvent(BaseModel):
    """A guard hook decision about a file edit attempted by an agent.

    Only ``blocked=True`` entries are real violations for grading; every
    entry counts toward trigger telemetry.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: str
    agent: str
    attempted_action: str
    target_file: str
    blocked: bool
    reason: str


class SubagentTimingEvent(BaseModel):
    """Timing and tool usage of one subagent invocation."""

    model_config = ConfigDict(frozen=True)

    timestamp: str
    agent: str
    phase: str
    started_at: str
    finished_at: str
    tool_calls_count: int = Field(ge=0)


TraceEvent = GuardViolationEvent | SubagentTimingEvent


class RunReport(BaseModel):
    """One completed pipeline execution, written by the pipeline and never modified."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    timestamp: str
    task_id: str
    subtask_id: str
    feature: str
    test_type: TestType
    phases: list[PhaseRecord] = Field(default_factory=list)
    fix_routing: FixRoutingRecord = Field(default_factory=FixRoutingRecord)
    guard_violations: list[GuardViolationEvent] = Field(default_factory=list)
    overall_status: RunStatus
    partial_credit_score: float = Field(ge=0.0, le=1.0)
    total_tokens: int | None = Field(default=None, ge=0)


# ---------------------------------------------------------------------------
# Trigger analysis
# ---------------------------------------------------------------------------

class TriggerType(str, Enum):
    EVENT_DRIVEN = "event_driven"
    TREND_BASED = "trend_based"
    COMMIT_BASED = "commit_based"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class Recommendation(str, Enum):
    """What the analyzer suggests doing with the current telemetry."""

    REFINE = "refine"
    EVAL_ONLY = "eval_only"
    NO_ACTION = "no_action"


class TriggerResult(BaseModel):
    """A single fired trigger signal."""

    type: TriggerType
    rule: str
    severity: Severity
    description: str
    affected_phase: str | None = None
    affected_agent: str | None = None
    evidence: dict[str, Any] = Field(default_factory=dict)


class AnalysisResult(BaseModel):
    """Outcome of one analyzer pass over collected telemetry."""

    timestamp: str = Field(default_factory=_utc_now_iso)
    runs_analyzed: int = 0
    traces_analyzed: int = 0
    triggers_fired: list[TriggerResult] = Field(default_factory=list)
    trend_rules_skipped: bool = False
    recommendation: Recommendation = Recommendation.NO_ACTION
    summary: str = ""


# ---------------------------------------------------------------------------
# Grading
# ---------------------------------------------------------------------------

class GraderResult(BaseModel):
    """Verdict of one independent grader."""

    grader: str
    score: float = Field(ge=0.0, le=1.0)
    passed: bool
    details: dict[str, Any] = Field(default_factory=dict)


class PartialCreditBreakdown(BaseModel):
    phases_completed: int
    phases_total: int
    phase_progression_score: float
    grader_ensemble_score: float
    final_score: float


class CompositeResult(BaseModel):
    """Final score of one trial: phase progression blended with grader quality."""

    passed: bool
    individual_scores: dict[str, GraderResult] = Field(default_factory=dict)
    partial_credit: PartialCreditBreakdown

    @computed_field  # type: ignore[prop-decorator]
    @property
    def overall_score(self) -> float:
        return self.partial_credit.final_score


class TaskTrialResult(BaseModel):
    """One (task, trial) execution on a single branch."""

    task_id: str
    trial: int = Field(ge=0)
    composite_result: CompositeResult
    duration_ms: float = Field(default=0.0, ge=0.0)
    exit_code: int = 0
    total_tokens: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Experiments
# ---------------------------------------------------------------------------

class AggregatedMetrics(BaseModel):
    """Branch-level KPI vector; the unit of control/variant comparison."""

    tsr: float = Field(default=0.0, ge=0.0, le=1.0)
    pass_at_1: float = Field(default=0.0, ge=0.0, le=1.0)
    pass_3: float = Field(default=0.0, ge=0.0, le=1.0)
    code_quality_score: float = Field(default=0.0, ge=0.0, le=1.0)
    total_tokens: float = Field(default=0.0, ge=0.0)
    median_cycle_time: float = Field(default=0.0, ge=0.0)
    gate_failure_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    guard_violations: int = Field(default=0, ge=0)


METRIC_KEYS: tuple[str, ...] = tuple(AggregatedMetrics.model_fields)


class TaskComparison(BaseModel):
    task_id: str
    control_outcome: TaskOutcome
    variant_outcome: TaskOutcome
    control_score: float
    variant_score: float
    delta: float
    regression: bool


class VersionManifest(BaseModel):
    """Content hashes of an environment's configuration surface."""

    agent_prompts_hash: str
    skill_hash: str
    hooks_hash: str
    settings_hash: str
    dataset_version: str


class Decision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    ACCEPT_WITH_CAVEAT = "accept_with_caveat"


class ExperimentResult(BaseModel):
    """One persisted A/B experiment."""

    model_config = ConfigDict(frozen=True)

    experiment_id: str
    timestamp: str = Field(default_factory=_utc_now_iso)
    hypothesis: str = ""
    variant_description: str = ""
    dataset_version: str
    control_config: VersionManifest
    variant_config: VersionManifest
    control_results: AggregatedMetrics
    variant_results: AggregatedMetrics
    per_task_comparison: list[TaskComparison] = Field(default_factory=list)
    decision: Decision
    decision_rationale: str


# ---------------------------------------------------------------------------
# Golden dataset
# ---------------------------------------------------------------------------

class AcceptanceCriteria(BaseModel):
    tests_must_fail_initially: bool
    tests_must_pass_after_green: bool
    no_test_modifications_in_green: bool
    static_analysis_clean: bool
    architecture_check: str


class GoldenDatasetTask(BaseModel):
    """One evaluation task from the golden dataset."""

    id: str
    description: str
    parent_task: str
    subtask_index: int
    test_type: TestType
    acceptance: AcceptanceCriteria
    reference_solution: str
    graders: list[str] = Field(default_factory=list)
    difficulty: Difficulty
