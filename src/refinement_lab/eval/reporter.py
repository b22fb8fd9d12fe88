"""Experiment persistence and human-readable reports."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from refinement_lab.eval.comparator import ComparisonReport, build_comparison_report
from refinement_lab.file_io import atomic_write_text
from refinement_lab.schemas import Decision, ExperimentResult, TaskComparison
from refinement_lab.telemetry.collector import CollectorError, load_json_record, read_experiments

logger = logging.getLogger(__name__)

ACCEPTED_MARKER = " ✓"


class ExperimentStore:
    """Experiments saved as ``<id>.json`` plus a rendered ``<id>.md`` next to it."""

    def __init__(self, reports_dir: str | Path) -> None:
        self.reports_dir = Path(reports_dir)

    def json_path(self, experiment_id: str) -> Path:
        return self.reports_dir / f"{experiment_id}.json"

    def markdown_path(self, experiment_id: str) -> Path:
        return self.reports_dir / f"{experiment_id}.md"

    def save(self, result: ExperimentResult) -> tuple[Path, Path]:
        json_path = self.json_path(result.experiment_id)
        md_path = self.markdown_path(result.experiment_id)
        atomic_write_text(json_path, result.model_dump_json(indent=2))
        atomic_write_text(md_path, format_markdown_report(result, build_comparison_report(result)))
        logger.info("Saved experiment %s to %s", result.experiment_id, self.reports_dir)
        return json_path, md_path

    def load(self, experiment_id: str) -> ExperimentResult:
        path = self.json_path(experiment_id)
        if not path.is_file():
            raise CollectorError(f"Experiment not found: {experiment_id}")
        return load_json_record(path, ExperimentResult)

    def load_history(self) -> list[ExperimentResult]:
        """All stored experiments, newest first."""
        return read_experiments(self.reports_dir)


def format_history_table(experiments: Sequence[ExperimentResult]) -> str:
    if not experiments:
        return "No experiments found"
    lines = [
        "# Experiment History",
        "",
        "| Date | Experiment | TSR | pass@1 | Guard Violations | Decision |",
        "|------|------------|-----|--------|------------------|----------|",
    ]
    for exp in experiments:
        variant = exp.variant_results
        marker = ACCEPTED_MARKER if exp.decision == Decision.ACCEPT else ""
        lines.append(
            f"| {exp.timestamp[:10]} | {exp.experiment_id} | {variant.tsr:.2f} "
            f"| {variant.pass_at_1:.2f} | {variant.guard_violations} "
            f"| {exp.decision.value}{marker} |"
        )
    return "\n".join(lines)


def format_delta(delta: float) -> str:
    sign = "+" if delta >= 0 else ""
    return f"{sign}{delta:.2f}"


def delta_status(delta: float) -> str:
    if delta > 0:
        return "Better"
    if delta < 0:
        return "Worse"
    return "Same"


def _task_section(title: str, tasks: Sequence[TaskComparison]) -> list[str]:
    lines = ["", f"## {title} ({len(tasks)} tasks)"]
    lines.extend(
        f"- {t.task_id}: control={t.control_score:.2f}, variant={t.variant_score:.2f}, "
        f"delta={format_delta(t.delta)}"
        for t in tasks
    )
    return lines


def format_markdown_report(result: ExperimentResult, report: ComparisonReport) -> str:
    lines = [
        f"# Experiment Report: {result.experiment_id}",
        "",
        "## Hypothesis",
        result.hypothesis,
        "",
        "## Results Summary",
        "| Metric | Control | Variant | Delta | Status |",
        "|--------|---------|---------|-------|--------|",
    ]
    for key, delta in report.deltas.items():
        control = getattr(report.control_metrics, key)
        variant = getattr(report.variant_metrics, key)
        lines.append(
            f"| {key} | {control:.2f} | {variant:.2f} | {format_delta(delta)} | {delta_status(delta)} |"
        )
    lines.extend(_task_section("Regressions", report.regressions))
    lines.extend(_task_section("Improvements", report.improvements))
    lines.extend(
        [
            "",
            f"## Decision: {result.decision.value.upper()}",
            result.decision_rationale,
        ]
    )
    return "\n".join(lines)
