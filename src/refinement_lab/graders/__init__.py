"""Grading: deterministic and LLM graders, the composite score, and judge calibration."""

from refinement_lab.graders.calibration import CalibrationResult, calibrate_judge
from refinement_lab.graders.composite import grade_composite

__all__ = ["CalibrationResult", "calibrate_judge", "grade_composite"]
