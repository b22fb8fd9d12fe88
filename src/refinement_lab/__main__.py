"""CLI entrypoint for refinement-lab."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from refinement_lab.agent_cli import AgentCli
from refinement_lab.config import (
    ConfigLoadError,
    GraderConfig,
    ThresholdsConfig,
    TriggersConfig,
    load_grader_config,
    load_thresholds_config,
    load_triggers_config,
)
from refinement_lab.eval.comparator import build_comparison_report
from refinement_lab.eval.reporter import ExperimentStore, format_history_table, format_markdown_report
from refinement_lab.eval.runner import AgentCliBackend, EvalRunConfig, GitWorktreeProvider, run_eval
from refinement_lab.file_io import iter_nonblank_lines
from refinement_lab.git_tools import GitError, changed_files
from refinement_lab.graders.calibration import CALIBRATION_THRESHOLD, calibrate_judge
from refinement_lab.metrics import compare_to_thresholds, compute_pipeline_kpis, compute_role_metrics
from refinement_lab.telemetry.collector import REPORTS_DIR, CollectorError, TelemetryCollector
from refinement_lab.triggers.analyzer import analyze

logger = logging.getLogger(__name__)

ARTIFACTS_DIR_ENV = "REFINEMENT_LAB_ARTIFACTS_DIR"
CONFIG_DIR_ENV = "REFINEMENT_LAB_CONFIG_DIR"
DEFAULT_ARTIFACTS_DIR = "artifacts"
DEFAULT_CONFIG_DIR = "config"
DEFAULT_DATASET_PATH = "datasets/golden-v1.jsonl"
DEFAULT_EVAL_TRIALS = 3
DEFAULT_EVAL_TIMEOUT_SECONDS = 120.0
CONFIG_SUFFIXES = (".yaml", ".yml", ".json")

_PROJECT_ERRORS = (CollectorError, ConfigLoadError, GitError, ValueError)


def _load_dotenv() -> None:
    """Load the nearest .env, searching upward from the working directory."""
    env_file = find_dotenv(usecwd=True)
    if env_file:
        load_dotenv(env_file)


def _find_config_file(config_dir: Path, stem: str) -> Path | None:
    for suffix in CONFIG_SUFFIXES:
        candidate = config_dir / f"{stem}{suffix}"
        if candidate.is_file():
            return candidate
    return None


def _triggers_config(config_dir: Path) -> TriggersConfig:
    path = _find_config_file(config_dir, "triggers")
    if path is None:
        logger.info("No triggers config in %s; using defaults", config_dir)
        return TriggersConfig()
    return load_triggers_config(path)


def _thresholds_config(path: str | None, config_dir: Path) -> ThresholdsConfig:
    resolved = Path(path) if path else _find_config_file(config_dir, "thresholds")
    if resolved is None:
        logger.info("No thresholds config in %s; using defaults", config_dir)
        return ThresholdsConfig()
    return load_thresholds_config(resolved)


def _grader_config(config_dir: Path) -> GraderConfig:
    path = _find_config_file(config_dir, "graders")
    if path is None:
        return GraderConfig()
    return load_grader_config(path)


def _parse_rubrics(values: list[str]) -> dict[str, str]:
    rubrics: dict[str, str] = {}
    for value in values:
        name, sep, path = value.partition("=")
        if not sep or not name.strip() or not path.strip():
            raise ValueError(f"--rubric expects NAME=PATH, got {value!r}")
        rubrics[name.strip()] = path.strip()
    return rubrics


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the command-line parser for all subcommands."""
    artifacts_default = os.environ.get(ARTIFACTS_DIR_ENV) or DEFAULT_ARTIFACTS_DIR
    config_default = os.environ.get(CONFIG_DIR_ENV) or DEFAULT_CONFIG_DIR

    p = argparse.ArgumentParser(
        prog="refinement-lab",
        description="Trigger analysis and A/B evaluation for a TDD agent pipeline.",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = p.add_subparsers(dest="command")

    analyze_p = sub.add_parser("analyze", help="Detect refinement triggers in collected telemetry.")
    analyze_p.add_argument("--artifacts-dir", default=artifacts_default, help="Artifacts directory.")
    analyze_p.add_argument("--config", default=config_default, help="Config directory.")
    analyze_p.add_argument(
        "--changed-file",
        action="append",
        default=[],
        help="Changed file path for commit-based rules (repeatable).",
    )
    analyze_p.add_argument(
        "--base-ref",
        default="",
        help="Also add files changed between this ref and HEAD of the current repo.",
    )

    eval_p = sub.add_parser("eval", help="Run an A/B evaluation between two branches.")
    eval_p.add_argument("--control", required=True, help="Control branch or ref.")
    eval_p.add_argument("--variant", required=True, help="Variant branch or ref.")
    eval_p.add_argument("--dataset", default=DEFAULT_DATASET_PATH, help="Golden dataset (JSONL).")
    eval_p.add_argument("--trials", type=int, default=DEFAULT_EVAL_TRIALS, help="Trials per task.")
    eval_p.add_argument("--quick", action="store_true", help="Evaluate a random subset of tasks.")
    eval_p.add_argument("--quick-size", type=int, default=5, help="Subset size for --quick.")
    eval_p.add_argument("--task-id", action="append", default=[], help="Only run this task (repeatable).")
    eval_p.add_argument("--hypothesis", default="", help="What the variant is expected to improve.")
    eval_p.add_argument("--variant-description", default="", help="Short description of the variant.")
    eval_p.add_argument("--repo", default=".", help="Repository holding both refs.")
    eval_p.add_argument("--artifacts-dir", default=artifacts_default, help="Artifacts directory.")
    eval_p.add_argument("--config", default=config_default, help="Config directory.")
    eval_p.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_EVAL_TIMEOUT_SECONDS,
        help="Per-trial agent timeout in seconds.",
    )
    eval_p.add_argument("--rubric", action="append", default=[], help="LLM judge rubric as NAME=PATH.")
    eval_p.add_argument("--parallel", action="store_true", help="Run control and variant concurrently.")

    history_p = sub.add_parser("history", help="Show the experiment history table.")
    history_p.add_argument("--reports-dir", default="", help="Reports directory.")
    history_p.add_argument("--artifacts-dir", default=artifacts_default, help="Artifacts directory.")

    report_p = sub.add_parser("report", help="Show the report of one experiment.")
    report_p.add_argument("experiment_id", help="Experiment id, e.g. exp-2026-01-31-1a2b3c4d.")
    report_p.add_argument("--format", choices=("md", "json"), default="md", help="Output format.")
    report_p.add_argument("--reports-dir", default="", help="Reports directory.")
    report_p.add_argument("--artifacts-dir", default=artifacts_default, help="Artifacts directory.")

    metrics_p = sub.add_parser("metrics", help="Pipeline KPIs, role metrics, and threshold checks.")
    metrics_p.add_argument("--artifacts-dir", default=artifacts_default, help="Artifacts directory.")
    metrics_p.add_argument("--config", default=config_default, help="Config directory.")
    metrics_p.add_argument("--thresholds", default="", help="Thresholds config file.")

    calibrate_p = sub.add_parser("calibrate", help="Rank-calibrate a judge against human scores.")
    calibrate_p.add_argument("--rubric", required=True, help="Rubric name.")
    calibrate_p.add_argument(
        "--samples",
        required=True,
        help='JSONL file of {"human": <score>, "automated": <score>} lines.',
    )
    calibrate_p.add_argument("--threshold", type=float, default=CALIBRATION_THRESHOLD)
    return p


def _reports_dir(args: argparse.Namespace) -> Path:
    return Path(args.reports_dir) if args.reports_dir else Path(args.artifacts_dir) / REPORTS_DIR


def _run_analyze(args: argparse.Namespace) -> int:
    config = _triggers_config(Path(args.config))
    changed = list(args.changed_file)
    if args.base_ref:
        changed.extend(changed_files(Path.cwd(), args.base_ref))
    result = analyze(TelemetryCollector(args.artifacts_dir), config, changed)
    print(result.model_dump_json(indent=2))
    print(f"Recommendation: {result.recommendation.value}")
    return 0


def _run_eval(args: argparse.Namespace) -> int:
    config = EvalRunConfig(
        dataset_path=Path(args.dataset),
        control_ref=args.control,
        variant_ref=args.variant,
        trials=args.trials,
        hypothesis=args.hypothesis,
        variant_description=args.variant_description,
        task_ids=args.task_id or None,
        quick=args.quick,
        quick_sample_size=args.quick_size,
        grader_config=_grader_config(Path(args.config)),
        parallel=args.parallel,
    )
    backend = AgentCliBackend(AgentCli(timeout=args.timeout), rubrics=_parse_rubrics(args.rubric))
    provider = GitWorktreeProvider(args.repo)
    store = ExperimentStore(Path(args.artifacts_dir) / REPORTS_DIR)
    result = run_eval(config, backend, provider, store)
    print(result.model_dump_json(indent=2))
    return 0


def _run_history(args: argparse.Namespace) -> int:
    print(format_history_table(ExperimentStore(_reports_dir(args)).load_history()))
    return 0


def _run_report(args: argparse.Namespace) -> int:
    result = ExperimentStore(_reports_dir(args)).load(args.experiment_id)
    if args.format == "json":
        print(result.model_dump_json(indent=2))
    else:
        print(format_markdown_report(result, build_comparison_report(result)))
    return 0


def _run_metrics(args: argparse.Namespace) -> int:
    reports = TelemetryCollector(args.artifacts_dir).read_run_reports()
    thresholds = _thresholds_config(args.thresholds or None, Path(args.config))
    kpis = compute_pipeline_kpis(reports)
    payload = {
        "runs": len(reports),
        "pipeline_kpis": kpis.model_dump(),
        "role_metrics": compute_role_metrics(reports).model_dump(by_alias=True),
        "threshold_violations": [asdict(v) for v in compare_to_thresholds(kpis, thresholds)],
    }
    print(json.dumps(payload, indent=2))
    return 0


def _run_calibrate(args: argparse.Namespace) -> int:
    human: list[float] = []
    automated: list[float] = []
    path = Path(args.samples)
    try:
        lines = list(iter_nonblank_lines(path))
    except OSError as exc:
        raise CollectorError(f"Failed to read file: {path}") from exc
    for number, line in lines:
        try:
            sample = json.loads(line)
            human.append(float(sample["human"]))
            automated.append(float(sample["automated"]))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise CollectorError(f"Invalid calibration sample at {path.name}:{number}: {line}") from exc
    result = calibrate_judge(args.rubric, human, automated, threshold=args.threshold)
    print(json.dumps(asdict(result), indent=2))
    return 0


_COMMANDS = {
    "analyze": _run_analyze,
    "eval": _run_eval,
    "history": _run_history,
    "report": _run_report,
    "metrics": _run_metrics,
    "calibrate": _run_calibrate,
}


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch to the selected subcommand."""
    _load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )
    handler = _COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return handler(args)
    except _PROJECT_ERRORS as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
