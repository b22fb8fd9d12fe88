"""Refinement Lab - telemetry triggers and A/B evaluation for TDD agent pipelines."""

from importlib.metadata import PackageNotFoundError, version

from refinement_lab.schemas import AggregatedMetrics, AnalysisResult, ExperimentResult, RunReport

__all__ = ["AggregatedMetrics", "AnalysisResult", "ExperimentResult", "RunReport"]

try:
    __version__ = version("refinement-lab")
except PackageNotFoundError:
    __version__ = "0.0.0"
