"""Telemetry store over an artifacts directory.

Layout::

    <artifacts>/runs/*.json       one RunReport per file
    <artifacts>/traces/*.jsonl    one trace event per line
    <artifacts>/reports/*.json    one ExperimentResult per file

Unreadable or schema-invalid records raise :class:`CollectorError`; they are
never skipped, because every KPI depends on seeing the true record count.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from refinement_lab.file_io import iter_nonblank_lines, sorted_files
from refinement_lab.schemas import (
    AggregatedMetrics,
    ExperimentResult,
    GuardViolationEvent,
    RunReport,
    SubagentTimingEvent,
    TraceEvent,
)

logger = logging.getLogger(__name__)

RUNS_DIR = "runs"
TRACES_DIR = "traces"
REPORTS_DIR = "reports"

ModelT = TypeVar("ModelT", bound=BaseModel)


class CollectorError(RuntimeError):
    """Raised when a telemetry, dataset, or experiment record cannot be parsed."""


def parse_timestamp(value: str) -> dt.datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into an aware datetime."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = dt.datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def _recency_key(timestamp: str) -> dt.datetime:
    try:
        return parse_timestamp(timestamp)
    except ValueError:
        logger.warning("Unparseable timestamp %r sorts as oldest", timestamp)
        return dt.datetime.min.replace(tzinfo=dt.timezone.utc)


def newest_first(records: list[ModelT]) -> list[ModelT]:
    """Sort records carrying a ``timestamp`` attribute from newest to oldest."""
    return sorted(records, key=lambda r: _recency_key(r.timestamp), reverse=True)  # type: ignore[attr-defined]


def load_json_record(path: Path, model: type[ModelT]) -> ModelT:
    """Parse one JSON file into *model*, naming the file on failure."""
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CollectorError(f"Failed to parse {path.name}: {exc}") from exc
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise CollectorError(f"Invalid schema in {path.name}: {exc}") from exc


def parse_trace_event(raw: Any) -> TraceEvent:
    """Build a trace event; timing events are recognised by ``tool_calls_count``."""
    if isinstance(raw, dict) and "tool_calls_count" in raw:
        return SubagentTimingEvent.model_validate(raw)
    return GuardViolationEvent.model_validate(raw)


def read_experiments(reports_dir: Path) -> list[ExperimentResult]:
    """Load every ExperimentResult in *reports_dir*, newest first."""
    experiments = [load_json_record(p, ExperimentResult) for p in sorted_files(reports_dir, ".json")]
    return newest_first(experiments)


class TelemetryCollector:
    """Read-only view of run reports, trace events, and experiment history."""

    def __init__(self, artifacts_dir: str | Path) -> None:
        self.artifacts_dir = Path(artifacts_dir)
        self.runs_dir = self.artifacts_dir / RUNS_DIR
        self.traces_dir = self.artifacts_dir / TRACES_DIR
        self.reports_dir = self.artifacts_dir / REPORTS_DIR

    def read_run_reports(self) -> list[RunReport]:
        """Return every run report, newest first."""
        reports = [load_json_record(p, RunReport) for p in sorted_files(self.runs_dir, ".json")]
        logger.debug("Read %d run reports from %s", len(reports), self.runs_dir)
        return newest_first(reports)

    def read_trace_events(self) -> list[TraceEvent]:
        """Return every trace event in file-name then line order."""
        events: list[TraceEvent] = []
        for path in sorted_files(self.traces_dir, ".jsonl"):
            try:
                lines = list(iter_nonblank_lines(path))
            except OSError as exc:
                raise CollectorError(f"Failed to read {path.name}: {exc}") from exc
            for number, line in lines:
                try:
                    events.append(parse_trace_event(json.loads(line)))
                except json.JSONDecodeError as exc:
                    raise CollectorError(f"Failed to parse {path.name}:{number}: {exc}") from exc
                except ValidationError as exc:
                    raise CollectorError(f"Invalid schema in {path.name}:{number}: {exc}") from exc
        logger.debug("Read %d trace events from %s", len(events), self.traces_dir)
        return events

    def latest_baseline(self) -> AggregatedMetrics | None:
        """Control metrics of the most recent experiment, or ``None`` without history."""
        experiments = read_experiments(self.reports_dir)
        if not experiments:
            return None
        latest = experiments[0]
        logger.debug("Using baseline from %s", latest.experiment_id)
        return latest.control_results
