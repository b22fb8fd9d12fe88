"""Run every trigger family over collected telemetry and derive a recommendation."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from refinement_lab.config import TriggersConfig
from refinement_lab.schemas import (
    AggregatedMetrics,
    AnalysisResult,
    Recommendation,
    RunReport,
    Severity,
    TraceEvent,
    TriggerResult,
)
from refinement_lab.triggers.rules import (
    check_commit_based_triggers,
    check_event_driven_triggers,
    check_trend_based_triggers,
)

logger = logging.getLogger(__name__)


class TelemetrySource(Protocol):
    """What the analyzer needs from a telemetry store."""

    def read_run_reports(self) -> list[RunReport]: ...

    def read_trace_events(self) -> list[TraceEvent]: ...

    def latest_baseline(self) -> AggregatedMetrics | None: ...


def derive_recommendation(triggers: Sequence[TriggerResult]) -> Recommendation:
    """``refine`` on any critical trigger, ``eval_only`` on any trigger, else ``no_action``."""
    if any(t.severity == Severity.CRITICAL for t in triggers):
        return Recommendation.REFINE
    if triggers:
        return Recommendation.EVAL_ONLY
    return Recommendation.NO_ACTION


def analyze(
    source: TelemetrySource,
    config: TriggersConfig,
    changed_files: Sequence[str] = (),
) -> AnalysisResult:
    """Collect telemetry from *source* and evaluate all trigger rules.

    Trend rules are skipped (``trend_rules_skipped=True``) when runs exist but
    no baseline does. Read failures from *source* propagate unchanged.
    """
    runs = source.read_run_reports()
    traces = source.read_trace_events()
    baseline = source.latest_baseline()
    rules = config.auto_refinement_triggers

    # Sources yield runs newest first: trend windows take the head, while
    # streaks and the token series read oldest to newest.
    event_triggers = check_event_driven_triggers(list(reversed(runs)), traces, rules.event_driven)

    skip_trends = bool(runs) and baseline is None
    if skip_trends:
        logger.info("No baseline experiment found; skipping trend-based rules")
        trend_triggers: list[TriggerResult] = []
    else:
        trend_triggers = check_trend_based_triggers(runs, baseline, rules.trend_based)

    commit_triggers = check_commit_based_triggers(changed_files, rules.commit_based)

    fired = [*event_triggers, *trend_triggers, *commit_triggers]
    recommendation = derive_recommendation(fired)

    if fired:
        summary = (
            f"Analyzed {len(runs)} runs, {len(traces)} traces; "
            f"{len(fired)} trigger(s) fired -> {recommendation.value}"
        )
    else:
        summary = f"Analyzed {len(runs)} runs, {len(traces)} traces; no triggers fired -> {recommendation.value}"
    logger.info(summary)

    return AnalysisResult(
        runs_analyzed=len(runs),
        traces_analyzed=len(traces),
        triggers_fired=fired,
        trend_rules_skipped=skip_trends,
        recommendation=recommendation,
        summary=summary,
    )
