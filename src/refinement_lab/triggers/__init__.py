"""Trigger detection: decide whether telemetry warrants pipeline refinement."""

from refinement_lab.triggers.analyzer import analyze, derive_recommendation
from refinement_lab.triggers.rules import (
    check_commit_based_triggers,
    check_event_driven_triggers,
    check_trend_based_triggers,
)

__all__ = [
    "analyze",
    "check_commit_based_triggers",
    "check_event_driven_triggers",
    "check_trend_based_triggers",
    "derive_recommendation",
]
