"""KPIs derived straight from pipeline run reports."""

from refinement_lab.metrics.pipeline import PipelineKpis, compute_pipeline_kpis, parse_duration
from refinement_lab.metrics.roles import RoleMetrics, compute_role_metrics
from refinement_lab.metrics.thresholds import ThresholdViolation, compare_to_thresholds

__all__ = [
    "PipelineKpis",
    "RoleMetrics",
    "ThresholdViolation",
    "compare_to_thresholds",
    "compute_pipeline_kpis",
    "compute_role_metrics",
    "parse_duration",
]
