"""Per-role metrics for the six pipeline agents."""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import BaseModel, Field

from refinement_lab.schemas import PipelinePhase, RunReport

# Gate failure reasons that mean the RED tests were broken rather than failing.
INVALID_RED_MARKERS = ("syntax", "import")


class TestWriterMetrics(BaseModel):
    failing_test_rate: float = 0.0
    red_invalid_rate: float = 0.0
    retries_to_valid_red: float = 0.0


class ImplementerMetrics(BaseModel):
    tests_pass_rate: float = 0.0
    retry_count_avg: float = 0.0
    escalation_rate: float = 0.0


class RefactorerMetrics(BaseModel):
    tests_remain_green_rate: float = 0.0
    regression_rate: float = 0.0


class CodeReviewerMetrics(BaseModel):
    fix_cycles_avg: float = 0.0
    escalation_rate: float = 0.0


class ArchitectReviewerMetrics(BaseModel):
    fix_cycles_avg: float = 0.0
    pass_rate: float = 0.0


class DocumenterMetrics(BaseModel):
    completion_rate: float = 0.0


class RoleMetrics(BaseModel):
    """Keyed by the agents' role names (``tdd-test-writer`` ...)."""

    test_writer: TestWriterMetrics = Field(default_factory=TestWriterMetrics, alias="tdd-test-writer")
    implementer: ImplementerMetrics = Field(default_factory=ImplementerMetrics, alias="tdd-implementer")
    refactorer: RefactorerMetrics = Field(default_factory=RefactorerMetrics, alias="tdd-refactorer")
    code_reviewer: CodeReviewerMetrics = Field(
        default_factory=CodeReviewerMetrics, alias="tdd-code-reviewer"
    )
    architect_reviewer: ArchitectReviewerMetrics = Field(
        default_factory=ArchitectReviewerMetrics, alias="tdd-architect-reviewer"
    )
    documenter: DocumenterMetrics = Field(default_factory=DocumenterMetrics, alias="tdd-documenter")


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def compute_role_metrics(reports: Sequence[RunReport]) -> RoleMetrics:
    """Rates per agent role; run-level rates divide by the number of reports."""
    total = len(reports)
    if total == 0:
        return RoleMetrics()

    red_phases = red_invalid = red_retries = 0
    green_phases = green_retries = green_escalations = 0
    refactor_phases = refactor_regressions = 0
    review_cycles = review_escalations = arch_cycles = 0
    passes = {phase: 0 for phase in PipelinePhase}

    for report in reports:
        passed_here: set[PipelinePhase] = set()
        for phase in report.phases:
            gate_passed = phase.gate_result == "pass"
            if gate_passed:
                passed_here.add(phase.phase)
            if phase.phase == PipelinePhase.RED:
                red_phases += 1
                red_retries += phase.retries
                reason = phase.gate_failure_reason or ""
                if any(marker in reason for marker in INVALID_RED_MARKERS):
                    red_invalid += 1
            elif phase.phase == PipelinePhase.GREEN:
                green_phases += 1
                green_retries += phase.retries
            elif phase.phase == PipelinePhase.REFACTOR:
                refactor_phases += 1
                if not gate_passed:
                    refactor_regressions += 1
        for phase in passed_here:
            passes[phase] += 1

        review_cycles += report.fix_routing.code_review_cycles
        arch_cycles += report.fix_routing.arch_review_cycles
        for escalation in report.fix_routing.escalations:
            if escalation.phase == PipelinePhase.GREEN.value:
                green_escalations += 1
            elif escalation.phase == PipelinePhase.CODE_REVIEW.value:
                review_escalations += 1

    return RoleMetrics.model_validate(
        {
            "tdd-test-writer": TestWriterMetrics(
                failing_test_rate=passes[PipelinePhase.RED] / total,
                red_invalid_rate=_ratio(red_invalid, red_phases),
                retries_to_valid_red=_ratio(red_retries, red_phases),
            ),
            "tdd-implementer": ImplementerMetrics(
                tests_pass_rate=passes[PipelinePhase.GREEN] / total,
                retry_count_avg=_ratio(green_retries, green_phases),
                escalation_rate=green_escalations / total,
            ),
            "tdd-refactorer": RefactorerMetrics(
                tests_remain_green_rate=passes[PipelinePhase.REFACTOR] / total,
                regression_rate=_ratio(refactor_regressions, refactor_phases),
            ),
            "tdd-code-reviewer": CodeReviewerMetrics(
                fix_cycles_avg=review_cycles / total,
                escalation_rate=review_escalations / total,
            ),
            "tdd-architect-reviewer": ArchitectReviewerMetrics(
                fix_cycles_avg=arch_cycles / total,
                pass_rate=passes[PipelinePhase.ARCH_REVIEW] / total,
            ),
            "tdd-documenter": DocumenterMetrics(completion_rate=passes[PipelinePhase.DOCS] / total),
        }
    )
