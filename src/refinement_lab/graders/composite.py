"""Composite grader: weighted grader ensemble blended with phase progression.

``final = progression * 0.4 + ensemble * 0.6``, so a run that completes no
phases scores at most 0.6 and a run with zero grader quality at most 0.4.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from refinement_lab.config import GraderConfig, validate_weights
from refinement_lab.schemas import CompositeResult, GraderResult, PartialCreditBreakdown

logger = logging.getLogger(__name__)

PROGRESSION_WEIGHT = 0.4
ENSEMBLE_WEIGHT = 0.6
PASS_THRESHOLD = 0.5


def phase_progression(phases_completed: int, phases_total: int) -> float:
    """Completed share of phases clamped to [0, 1]; 0 when there are no phases."""
    if phases_total == 0:
        return 0.0
    return max(0.0, min(1.0, phases_completed / phases_total))


def ensemble_score(weights: Mapping[str, float], results: Mapping[str, GraderResult]) -> float:
    """Weighted sum of grader scores; graders without a result count as 0."""
    return sum(
        weight * (results[name].score if name in results else 0.0)
        for name, weight in weights.items()
    )


def grade_composite(
    config: GraderConfig | Mapping[str, float],
    results: Mapping[str, GraderResult],
    phases_completed: int,
    phases_total: int,
) -> CompositeResult:
    """Combine individual grader *results* with phase progression into one score.

    *config* is a :class:`GraderConfig` or a raw weight map. Either way the
    weights are validated (sum to 1.0 within 0.01) before anything is computed.
    """
    weights: Mapping[str, float] = config.weights if isinstance(config, GraderConfig) else config
    validate_weights(dict(weights))

    ensemble = ensemble_score(weights, results)
    progression = phase_progression(phases_completed, phases_total)
    final = progression * PROGRESSION_WEIGHT + ensemble * ENSEMBLE_WEIGHT
    logger.debug(
        "Composite score: progression=%.4f ensemble=%.4f final=%.4f",
        progression,
        ensemble,
        final,
    )
    return CompositeResult(
        passed=final >= PASS_THRESHOLD,
        individual_scores=dict(results),
        partial_credit=PartialCreditBreakdown(
            phases_completed=phases_completed,
            phases_total=phases_total,
            phase_progression_score=progression,
            grader_ensemble_score=ensemble,
            final_score=final,
        ),
    )
