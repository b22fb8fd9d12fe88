"""Pipeline KPIs computed directly from run reports."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from pydantic import BaseModel

from refinement_lab.eval.aggregator import median
from refinement_lab.schemas import RunReport, RunStatus

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^(\d+)([smh])?$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600}


class PipelineKpis(BaseModel):
    tsr: float = 0.0
    pass_at_1: float = 0.0
    code_quality_score: float = 0.0
    gate_failure_rate: float = 0.0
    median_cycle_time: float = 0.0
    total_retries_avg: float = 0.0
    fix_routing_cycles_avg: float = 0.0
    guard_violations_total: int = 0
    guard_violations_per_run: float = 0.0

    @property
    def guard_violations(self) -> int:
        return self.guard_violations_total


def parse_duration(value: str | None) -> int:
    """``"90"``/``"90s"`` -> 90, ``"2m"`` -> 120, ``"1h"`` -> 3600; anything else -> 0."""
    if not value:
        return 0
    match = _DURATION_RE.match(value.strip())
    if not match:
        return 0
    return int(match.group(1)) * _UNIT_SECONDS[match.group(2) or "s"]


def compute_pipeline_kpis(reports: Sequence[RunReport]) -> PipelineKpis:
    if not reports:
        return PipelineKpis()

    done = 0
    first_time = 0
    gate_failures = 0
    phase_count = 0
    retries = 0
    fix_cycles = 0
    guard_violations = 0
    cycle_times: list[float] = []
    for report in reports:
        report_retries = sum(phase.retries for phase in report.phases)
        phase_count += len(report.phases)
        gate_failures += sum(1 for phase in report.phases if phase.gate_result == "fail")
        if report.overall_status == RunStatus.DONE:
            done += 1
            if report_retries == 0:
                first_time += 1
        cycle_times.append(sum(parse_duration(phase.duration_estimate) for phase in report.phases))
        retries += report_retries
        fix_cycles += report.fix_routing.code_review_cycles + report.fix_routing.arch_review_cycles
        guard_violations += len(report.guard_violations)

    n = len(reports)
    kpis = PipelineKpis(
        tsr=done / n,
        pass_at_1=first_time / n,
        code_quality_score=sum(r.partial_credit_score for r in reports) / n,
        gate_failure_rate=gate_failures / phase_count if phase_count else 0.0,
        median_cycle_time=median(cycle_times),
        total_retries_avg=retries / n,
        fix_routing_cycles_avg=fix_cycles / n,
        guard_violations_total=guard_violations,
        guard_violations_per_run=guard_violations / n,
    )
    logger.debug("Pipeline KPIs over %d runs: %s", n, kpis)
    return kpis
