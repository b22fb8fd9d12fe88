"""Tests for experiment persistence and report rendering."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from helpers import make_comparison, make_experiment
from refinement_lab.eval.comparator import build_comparison_report
from refinement_lab.eval.reporter import (
    ExperimentStore,
    delta_status,
    format_delta,
    format_history_table,
    format_markdown_report,
)
from refinement_lab.schemas import AggregatedMetrics
from refinement_lab.telemetry import CollectorError


@pytest.mark.integration
class TestExperimentStore:
    def test_save_writes_json_and_markdown(self, tmp_path: Path) -> None:
        store = ExperimentStore(tmp_path / "reports")
        experiment = make_experiment()

        json_path, md_path = store.save(experiment)

        assert json.loads(json_path.read_text(encoding="utf-8"))["experiment_id"] == experiment.experiment_id
        assert md_path.read_text(encoding="utf-8").startswith(f"# Experiment Report: {experiment.experiment_id}")
        assert store.load(experiment.experiment_id) == experiment

    def test_history_is_newest_first(self, tmp_path: Path) -> None:
        store = ExperimentStore(tmp_path)
        store.save(make_experiment("exp-a", timestamp="2026-01-01T00:00:00+00:00"))
        store.save(make_experiment("exp-c", timestamp="2026-03-01T00:00:00+00:00"))
        store.save(make_experiment("exp-b", timestamp="2026-02-01T00:00:00+00:00"))

        assert [e.experiment_id for e in store.load_history()] == ["exp-c", "exp-b", "exp-a"]

    def test_missing_directory_has_no_history(self, tmp_path: Path) -> None:
        assert ExperimentStore(tmp_path / "none").load_history() == []

    def test_corrupt_report_raises(self, tmp_path: Path) -> None:
        (tmp_path / "exp-x.json").write_text("{", encoding="utf-8")
        with pytest.raises(CollectorError, match="exp-x.json"):
            ExperimentStore(tmp_path).load_history()

    def test_load_unknown_experiment_raises(self, tmp_path: Path) -> None:
        with pytest.raises(CollectorError, match="Experiment not found"):
            ExperimentStore(tmp_path).load("exp-missing")


@pytest.mark.unit
class TestFormatting:
    def test_empty_history(self) -> None:
        assert format_history_table([]) == "No experiments found"

    def test_history_rows(self) -> None:
        table = format_history_table(
            [
                make_experiment("exp-1", variant=AggregatedMetrics(tsr=0.9, pass_at_1=0.8, guard_violations=2)),
                make_experiment("exp-2", decision="reject", rationale="Rejected: tsr degraded"),
            ]
        )
        lines = table.splitlines()
        assert lines[0] == "# Experiment History"
        assert "| 2026-01-01 | exp-1 | 0.90 | 0.80 | 2 | accept ✓ |" in lines
        assert lines[-1].endswith("| reject |")

    def test_delta_helpers(self) -> None:
        assert format_delta(0.1) == "+0.10"
        assert format_delta(0) == "+0.00"
        assert format_delta(-0.25) == "-0.25"
        assert delta_status(0.1) == "Better"
        assert delta_status(-0.1) == "Worse"
        assert delta_status(0) == "Same"

    def test_markdown_report_sections(self) -> None:
        experiment = make_experiment(
            comparisons=[make_comparison("t1", 0.9, 0.4), make_comparison("t2", 0.4, 0.9)],
            decision="reject",
            rationale="Rejected: regression rate 50.0% exceeds 20% threshold",
        )
        text = format_markdown_report(experiment, build_comparison_report(experiment))

        assert "## Hypothesis\nStricter RED prompt improves test quality" in text
        assert "| tsr | 0.80 | 0.90 | +0.10 | Better |" in text
        assert "## Regressions (1 tasks)" in text
        assert "- t1: control=0.90, variant=0.40, delta=-0.50" in text
        assert "## Improvements (1 tasks)" in text
        assert text.endswith("## Decision: REJECT\nRejected: regression rate 50.0% exceeds 20% threshold")
