"""Read-only access to pipeline telemetry stored in an artifacts directory."""

from refinement_lab.telemetry.collector import CollectorError, TelemetryCollector

__all__ = ["CollectorError", "TelemetryCollector"]
