"""Tests for the telemetry collector."""

from __future__ import annotations

from pathlib import Path

import pytest

from helpers import (
    make_experiment,
    make_guard_violation,
    make_run_report,
    make_timing_event,
    write_json,
    write_jsonl,
)
from refinement_lab.schemas import AggregatedMetrics, GuardViolationEvent, SubagentTimingEvent
from refinement_lab.telemetry import CollectorError, TelemetryCollector
from refinement_lab.telemetry.collector import parse_timestamp

pytestmark = pytest.mark.integration


def test_missing_directories_yield_empty_collections(tmp_path: Path) -> None:
    collector = TelemetryCollector(tmp_path / "nowhere")
    assert collector.read_run_reports() == []
    assert collector.read_trace_events() == []
    assert collector.latest_baseline() is None


def test_run_reports_are_returned_newest_first(artifacts_dir: Path) -> None:
    write_json(artifacts_dir / "runs" / "a.json", make_run_report("old", timestamp="2026-01-01T00:00:00Z"))
    write_json(artifacts_dir / "runs" / "b.json", make_run_report("new", timestamp="2026-01-03T00:00:00Z"))
    write_json(artifacts_dir / "runs" / "c.json", make_run_report("mid", timestamp="2026-01-02T00:00:00Z"))

    reports = TelemetryCollector(artifacts_dir).read_run_reports()

    assert [r.run_id for r in reports] == ["new", "mid", "old"]


def test_non_json_files_are_ignored(artifacts_dir: Path) -> None:
    (artifacts_dir / "runs" / "notes.txt").write_text("not a report", encoding="utf-8")
    assert TelemetryCollector(artifacts_dir).read_run_reports() == []


def test_malformed_run_report_names_the_file(artifacts_dir: Path) -> None:
    (artifacts_dir / "runs" / "broken.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(CollectorError, match="Failed to parse broken.json"):
        TelemetryCollector(artifacts_dir).read_run_reports()


def test_schema_invalid_run_report_raises(artifacts_dir: Path) -> None:
    write_json(artifacts_dir / "runs" / "bad.json", {"run_id": "x"})
    with pytest.raises(CollectorError, match="Invalid schema in bad.json"):
        TelemetryCollector(artifacts_dir).read_run_reports()


def test_trace_events_are_typed_by_shape(artifacts_dir: Path) -> None:
    write_jsonl(
        artifacts_dir / "traces" / "session.jsonl",
        [make_guard_violation(), "", make_timing_event(12)],
    )

    events = TelemetryCollector(artifacts_dir).read_trace_events()

    assert len(events) == 2
    assert isinstance(events[0], GuardViolationEvent)
    assert isinstance(events[1], SubagentTimingEvent)
    assert events[1].tool_calls_count == 12


def test_bad_trace_line_reports_file_and_line(artifacts_dir: Path) -> None:
    write_jsonl(artifacts_dir / "traces" / "session.jsonl", [make_guard_violation(), "{oops"])
    with pytest.raises(CollectorError, match=r"session\.jsonl:2"):
        TelemetryCollector(artifacts_dir).read_trace_events()


def test_latest_baseline_uses_most_recent_experiment(artifacts_dir: Path) -> None:
    older = make_experiment(
        "exp-2026-01-01-00000001",
        timestamp="2026-01-01T00:00:00+00:00",
        control=AggregatedMetrics(tsr=0.5),
    )
    newer = make_experiment(
        "exp-2026-02-01-00000002",
        timestamp="2026-02-01T00:00:00+00:00",
        control=AggregatedMetrics(tsr=0.9),
    )
    write_json(artifacts_dir / "reports" / f"{newer.experiment_id}.json", newer)
    write_json(artifacts_dir / "reports" / f"{older.experiment_id}.json", older)

    baseline = TelemetryCollector(artifacts_dir).latest_baseline()

    assert baseline is not None
    assert baseline.tsr == 0.9


def test_parse_timestamp_accepts_zulu_suffix() -> None:
    parsed = parse_timestamp("2026-01-01T10:00:00Z")
    assert parsed.utcoffset() is not None
    assert parsed.hour == 10
