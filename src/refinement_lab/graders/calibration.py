"""Spearman rank calibration of an automated judge against human annotations."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)

CALIBRATION_THRESHOLD = 0.80


@dataclass(frozen=True, slots=True)
class CalibrationResult:
    rubric: str
    spearman_correlation: float
    sample_size: int
    calibrated: bool


def rank_values(values: Sequence[float]) -> list[float]:
    """Return 1-based ranks; tied values share the mean of the ranks they occupy."""
    order = sorted(range(len(values)), key=lambda i: values[i])
    ranks = [0.0] * len(values)
    pos = 0
    while pos < len(order):
        end = pos
        while end + 1 < len(order) and values[order[end + 1]] == values[order[pos]]:
            end += 1
        avg_rank = (pos + 1 + end + 1) / 2
        for k in range(pos, end + 1):
            ranks[order[k]] = avg_rank
        pos = end + 1
    return ranks


def spearman_correlation(first: Sequence[float], second: Sequence[float]) -> float:
    """Spearman's rho = 1 - 6*sum(d^2) / (n*(n^2 - 1)) over the rank differences."""
    if len(first) != len(second):
        raise ValueError(
            f"Score series must have the same length, got {len(first)} and {len(second)}"
        )
    n = len(first)
    if n < 2:
        raise ValueError(f"Spearman correlation requires at least 2 samples, got {n}")
    sum_d_sq = sum((a - b) ** 2 for a, b in zip(rank_values(first), rank_values(second)))
    return 1 - (6 * sum_d_sq) / (n * (n * n - 1))


def calibrate_judge(
    rubric: str,
    human_scores: Sequence[float],
    automated_scores: Sequence[float],
    *,
    threshold: float = CALIBRATION_THRESHOLD,
) -> CalibrationResult:
    """Check how well *automated_scores* rank-agree with *human_scores*.

    Raises ``ValueError`` for fewer than 2 samples or mismatched lengths.
    """
    if len(human_scores) < 2:
        raise ValueError(f"Calibration requires at least 2 samples, got {len(human_scores)}")
    if len(human_scores) != len(automated_scores):
        raise ValueError(
            "human_scores and automated_scores must have the same length "
            f"({len(human_scores)} != {len(automated_scores)})"
        )
    rho = spearman_correlation(human_scores, automated_scores)
    logger.debug("Calibration for %s: rho=%.4f over %d samples", rubric, rho, len(human_scores))
    return CalibrationResult(
        rubric=rubric,
        spearman_correlation=rho,
        sample_size=len(human_scores),
        calibrated=rho >= threshold,
    )
