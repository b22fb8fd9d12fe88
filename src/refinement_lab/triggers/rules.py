"""Trigger rule families.

Three independent pure functions, one per family, each taking telemetry plus
its own config section and returning the triggers that fired:

- :func:`check_event_driven_triggers` - guard violations, gate-failure
  streaks, token anomalies, manual-intervention streaks
- :func:`check_trend_based_triggers` - TSR drop, token inflation, flake rate
  against a historical baseline
- :func:`check_commit_based_triggers` - changes to watched configuration paths
"""

from __future__ import annotations

import functools
import logging
import math
from collections.abc import Sequence
from pathlib import PurePosixPath

import pathspec

from refinement_lab.config import (
    CommitBasedConfig,
    EventDrivenConfig,
    TrendBasedConfig,
)
from refinement_lab.schemas import (
    PIPELINE_PHASES,
    AggregatedMetrics,
    RunReport,
    RunStatus,
    Severity,
    SubagentTimingEvent,
    TraceEvent,
    TriggerResult,
    TriggerType,
)

logger = logging.getLogger(__name__)

# A run is flaky when its partial credit lies strictly inside these bounds.
FLAKE_SCORE_LOWER = 0.0
FLAKE_SCORE_UPPER = 1.0


# ---------------------------------------------------------------------------
# Event-driven
# ---------------------------------------------------------------------------

def _guard_violation_trigger(
    runs: Sequence[RunReport], config: EventDrivenConfig
) -> TriggerResult | None:
    rule = config.guard_violation
    total = sum(len(run.guard_violations) for run in runs)
    if total < rule.threshold:
        return None
    return TriggerResult(
        type=TriggerType.EVENT_DRIVEN,
        rule="guard_violation",
        severity=Severity.CRITICAL,
        description=rule.description,
        evidence={"total_guard_violations": total, "threshold": rule.threshold},
    )


def _gate_failure_streak_triggers(
    runs: Sequence[RunReport], config: EventDrivenConfig
) -> list[TriggerResult]:
    rule = config.gate_failure_streak
    results: list[TriggerResult] = []
    for phase in PIPELINE_PHASES:
        streak = 0
        for run in runs:
            failed = any(p.phase == phase and p.gate_result == "fail" for p in run.phases)
            streak = streak + 1 if failed else 0
            if streak >= rule.threshold:
                results.append(
                    TriggerResult(
                        type=TriggerType.EVENT_DRIVEN,
                        rule="gate_failure_streak",
                        severity=Severity.WARNING,
                        description=rule.description,
                        affected_phase=phase.value,
                        evidence={
                            "phase": phase.value,
                            "streak": streak,
                            "threshold": rule.threshold,
                        },
                    )
                )
                break
    return results


def token_series(runs: Sequence[RunReport], traces: Sequence[TraceEvent]) -> tuple[list[float], str]:
    """Return the usage series for anomaly detection and the name of its source.

    Run-level ``total_tokens`` wins whenever at least one run reports it;
    otherwise subagent tool-call counts stand in.
    """
    run_tokens = [float(run.total_tokens) for run in runs if run.total_tokens is not None]
    if run_tokens:
        return run_tokens, "run_total_tokens"
    tool_calls = [
        float(event.tool_calls_count)
        for event in traces
        if isinstance(event, SubagentTimingEvent)
    ]
    return tool_calls, "tool_calls_count"


def z_score(latest: float, historical: Sequence[float]) -> tuple[float, float, float]:
    """Return ``(z, mean, population_stddev)`` of *latest* against *historical*."""
    mean = sum(historical) / len(historical)
    variance = sum((value - mean) ** 2 for value in historical) / len(historical)
    std_dev = math.sqrt(variance)
    if std_dev == 0:
        z = math.inf if latest > mean else 0.0
    else:
        z = (latest - mean) / std_dev
    return z, mean, std_dev


def _token_anomaly_trigger(
    runs: Sequence[RunReport], traces: Sequence[TraceEvent], config: EventDrivenConfig
) -> TriggerResult | None:
    rule = config.token_anomaly
    series, source = token_series(runs, traces)
    if len(series) < 2:
        return None
    latest = series[-1]
    z, mean, std_dev = z_score(latest, series[:-1])
    logger.debug("Token anomaly check: latest=%s mean=%.2f std=%.2f z=%s", latest, mean, std_dev, z)
    if z < rule.sigma_threshold:
        return None
    return TriggerResult(
        type=TriggerType.EVENT_DRIVEN,
        rule="token_anomaly",
        severity=Severity.WARNING,
        description=rule.description,
        evidence={
            "source": source,
            "latest": latest,
            "mean": mean,
            "std_dev": std_dev,
            "z_score": z,
            "sigma_threshold": rule.sigma_threshold,
        },
    )


def _manual_intervention_trigger(
    runs: Sequence[RunReport], config: EventDrivenConfig
) -> TriggerResult | None:
    rule = config.manual_intervention_streak
    streak = 0
    for run in runs:
        streak = streak + 1 if run.overall_status == RunStatus.ESCALATED else 0
        if streak >= rule.threshold:
            return TriggerResult(
                type=TriggerType.EVENT_DRIVEN,
                rule="manual_intervention_streak",
                severity=Severity.CRITICAL,
                description=rule.description,
                evidence={"escalation_streak": streak, "threshold": rule.threshold},
            )
    return None


def check_event_driven_triggers(
    runs: Sequence[RunReport],
    traces: Sequence[TraceEvent],
    config: EventDrivenConfig,
) -> list[TriggerResult]:
    """Evaluate the event-driven rules over *runs* (in the given order) and *traces*."""
    results: list[TriggerResult] = []
    guard = _guard_violation_trigger(runs, config)
    if guard is not None:
        results.append(guard)
    results.extend(_gate_failure_streak_triggers(runs, config))
    anomaly = _token_anomaly_trigger(runs, traces, config)
    if anomaly is not None:
        results.append(anomaly)
    escalation = _manual_intervention_trigger(runs, config)
    if escalation is not None:
        results.append(escalation)
    return results


# ---------------------------------------------------------------------------
# Trend-based
# ---------------------------------------------------------------------------

def is_flaky(run: RunReport) -> bool:
    return FLAKE_SCORE_LOWER < run.partial_credit_score < FLAKE_SCORE_UPPER


def check_trend_based_triggers(
    runs: Sequence[RunReport],
    baseline: AggregatedMetrics | None,
    config: TrendBasedConfig,
) -> list[TriggerResult]:
    """Compare the leading window of *runs* against *baseline*.

    Returns nothing when there is no baseline or no runs.
    """
    if baseline is None or not runs:
        return []
    results: list[TriggerResult] = []

    tsr_rule = config.tsr_drop
    tsr_window = runs[: tsr_rule.window_runs]
    if baseline.tsr > 0:
        done = sum(1 for run in tsr_window if run.overall_status == RunStatus.DONE)
        current_tsr = done / len(tsr_window)
        drop_percent = (baseline.tsr - current_tsr) / baseline.tsr * 100
        if drop_percent > tsr_rule.threshold_percent:
            results.append(
                TriggerResult(
                    type=TriggerType.TREND_BASED,
                    rule="tsr_drop",
                    severity=Severity.WARNING,
                    description=tsr_rule.description,
                    evidence={
                        "baseline_tsr": baseline.tsr,
                        "current_tsr": current_tsr,
                        "drop_percent": drop_percent,
                        "threshold_percent": tsr_rule.threshold_percent,
                        "window_runs": len(tsr_window),
                    },
                )
            )

    token_rule = config.token_inflation
    token_values = [
        run.total_tokens
        for run in runs[: token_rule.window_runs]
        if run.total_tokens is not None
    ]
    if token_values and baseline.total_tokens > 0:
        current_avg = sum(token_values) / len(token_values)
        inflation_percent = (current_avg - baseline.total_tokens) / baseline.total_tokens * 100
        if inflation_percent > token_rule.threshold_percent:
            results.append(
                TriggerResult(
                    type=TriggerType.TREND_BASED,
                    rule="token_inflation",
                    severity=Severity.WARNING,
                    description=token_rule.description,
                    evidence={
                        "baseline_avg_tokens": baseline.total_tokens,
                        "current_avg_tokens": current_avg,
                        "inflation_percent": inflation_percent,
                        "threshold_percent": token_rule.threshold_percent,
                        "window_runs": len(token_values),
                    },
                )
            )

    flake_rule = config.flake_rate
    flake_window = runs[: flake_rule.window_runs]
    flaky = sum(1 for run in flake_window if is_flaky(run))
    flake_rate = flaky / len(flake_window)
    threshold_rate = flake_rule.threshold_percent / 100
    if flake_rate > threshold_rate:
        results.append(
            TriggerResult(
                type=TriggerType.TREND_BASED,
                rule="flake_rate",
                severity=Severity.WARNING,
                description=flake_rule.description,
                evidence={
                    "flaky_runs": flaky,
                    "window_runs": len(flake_window),
                    "flake_rate": flake_rate,
                    "threshold_rate": threshold_rate,
                },
            )
        )

    return results


# ---------------------------------------------------------------------------
# Commit-based
# ---------------------------------------------------------------------------

@functools.lru_cache(maxsize=256)
def compile_watch_pattern(pattern: str) -> pathspec.PathSpec:
    """Compile *pattern* as a gitwildmatch spec anchored at the repository root.

    A trailing ``/**`` also matches the directory itself.
    """
    anchored = pattern if pattern.startswith(("/", "**")) else f"/{pattern}"
    lines = [anchored]
    if anchored.endswith("/**"):
        lines.append(anchored[: -len("/**")])
    return pathspec.PathSpec.from_lines("gitwildmatch", lines)


def glob_match(pattern: str, path: str) -> bool:
    """``*`` and ``?`` stay inside one path segment; ``**`` spans any number of them."""
    normalized = path.replace("\\", "/").removeprefix("./")
    spec = compile_watch_pattern(pattern)
    if not spec.match_file(normalized):
        return False
    if pattern.endswith("**"):
        return True
    # gitwildmatch also matches everything below a matched directory.
    return not any(
        spec.match_file(parent.as_posix())
        for parent in PurePosixPath(normalized).parents
        if parent.name
    )


def check_commit_based_triggers(
    changed_files: Sequence[str],
    config: CommitBasedConfig,
) -> list[TriggerResult]:
    """Fire one warning when any changed file matches a watched pattern."""
    matches = [
        path
        for path in changed_files
        if any(glob_match(pattern, path) for pattern in config.watched_paths)
    ]
    if not matches:
        return []
    return [
        TriggerResult(
            type=TriggerType.COMMIT_BASED,
            rule="watched_paths_change",
            severity=Severity.WARNING,
            description="Changes detected in watched paths; run subset evaluation",
            evidence={
                "matched_files": matches,
                "watched_paths": list(config.watched_paths),
                "action": config.action,
                "subset_size": config.subset_size,
                "block_if": config.block_if,
            },
        )
    ]
