"""Accept / reject policy for a variant configuration."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from refinement_lab.schemas import AggregatedMetrics, Decision, TaskComparison

logger = logging.getLogger(__name__)

# Policy constants. Callers may override them per decision.
MAX_REGRESSION_RATE = 0.20
KEY_METRICS: tuple[str, ...] = ("tsr", "pass_at_1", "code_quality_score")


def regression_rate(comparisons: Sequence[TaskComparison]) -> float:
    if not comparisons:
        return 0.0
    return sum(1 for c in comparisons if c.regression) / len(comparisons)


def make_decision(
    control: AggregatedMetrics,
    variant: AggregatedMetrics,
    comparisons: Sequence[TaskComparison],
    *,
    max_regression_rate: float = MAX_REGRESSION_RATE,
) -> tuple[Decision, str]:
    """Decide whether to adopt the variant.

    1. reject when any key metric is strictly worse or the regression rate
       exceeds *max_regression_rate*;
    2. accept_with_caveat when some tasks regressed;
    3. accept otherwise.
    """
    rate = regression_rate(comparisons)
    reasons = [
        f"{key} degraded ({getattr(control, key)} -> {getattr(variant, key)})"
        for key in KEY_METRICS
        if getattr(variant, key) < getattr(control, key)
    ]
    threshold_pct = max_regression_rate * 100
    if rate > max_regression_rate:
        reasons.append(
            f"regression rate {rate * 100:.1f}% exceeds {threshold_pct:.0f}% threshold"
        )

    if reasons:
        decision, rationale = Decision.REJECT, f"Rejected: {'; '.join(reasons)}"
    elif rate > 0:
        decision = Decision.ACCEPT_WITH_CAVEAT
        rationale = (
            "Accepted with caveat: all key metrics improved or held, but "
            f"{rate * 100:.1f}% of tasks regressed (within {threshold_pct:.0f}% threshold)"
        )
    else:
        decision = Decision.ACCEPT
        rationale = (
            f"Accepted: all key metrics ({', '.join(KEY_METRICS)}) are >= control "
            "with zero task regressions"
        )
    logger.info("Decision: %s (%s)", decision.value, rationale)
    return decision, rationale
