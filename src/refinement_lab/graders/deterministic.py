"""Deterministic graders that inspect a working copy after a trial.

Each grader returns a :class:`GraderResult` with a score in [0, 1]. Commands
that cannot be launched are reported in ``details`` instead of raised.
"""

from __future__ import annotations

import json
import logging
import re
import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from refinement_lab.file_io import iter_nonblank_lines
from refinement_lab.git_tools import GitError, changed_files
from refinement_lab.schemas import GraderResult
from refinement_lab.telemetry.collector import CollectorError

logger = logging.getLogger(__name__)

DEFAULT_TEST_CMD = "python -m pytest -q"
DEFAULT_STATIC_ANALYSIS_CMD = "python -m ruff check ."
VIOLATIONS_FILE = Path("artifacts") / "traces" / "violations.jsonl"
OUTPUT_EXCERPT_CHARS = 1000
COMMAND_TIMEOUT_SECONDS = 600

_ERROR_LINE_RE = re.compile(r"\berror\b", re.IGNORECASE)
_WARNING_LINE_RE = re.compile(r"\bwarning\b", re.IGNORECASE)


@dataclass
class DeterministicGraderInput:
    working_directory: Path
    test_command: str = DEFAULT_TEST_CMD
    static_analysis_command: str = DEFAULT_STATIC_ANALYSIS_CMD
    test_files: list[str] = field(default_factory=list)
    impl_files: list[str] = field(default_factory=list)
    base_commit: str = "HEAD"


def parse_command(command: str | Sequence[str]) -> list[str]:
    """Split a shell-like command string into argv tokens."""
    if isinstance(command, str):
        try:
            parts = shlex.split(command)
        except ValueError:
            logger.warning("Could not parse command %r with shell quoting; splitting on whitespace", command)
            parts = command.split()
    else:
        parts = [str(part) for part in command]
    return [part for part in parts if part.strip()]


def _run(argv: list[str], cwd: Path) -> subprocess.CompletedProcess[str]:
    logger.debug("Running %s (cwd=%s)", " ".join(argv), cwd)
    return subprocess.run(
        argv,
        cwd=cwd,
        capture_output=True,
        text=True,
        timeout=COMMAND_TIMEOUT_SECONDS,
    )


def grade_test_runner(grader_input: DeterministicGraderInput) -> GraderResult:
    """1.0 when the test command exits 0, otherwise 0.0."""
    argv = parse_command(grader_input.test_command)
    if not argv:
        return GraderResult(
            grader="TestRunnerGrader",
            score=0.0,
            passed=False,
            details={"error": "empty test command"},
        )
    try:
        proc = _run(argv, grader_input.working_directory)
    except (FileNotFoundError, subprocess.TimeoutExpired) as exc:
        return GraderResult(
            grader="TestRunnerGrader",
            score=0.0,
            passed=False,
            details={"exit_code": -1, "error": str(exc)},
        )
    excerpt = proc.stdout[:OUTPUT_EXCERPT_CHARS]
    passed = proc.returncode == 0
    return GraderResult(
        grader="TestRunnerGrader",
        score=1.0 if passed else 0.0,
        passed=passed,
        details={"exit_code": proc.returncode, "output_excerpt": excerpt},
    )


def grade_static_analysis(grader_input: DeterministicGraderInput) -> GraderResult:
    """Score the static-analysis command: clean 1.0, warnings only 0.5, errors 0.0.

    A checker that is not installed is skipped with a full score.
    """
    argv = parse_command(grader_input.static_analysis_command)
    try:
        proc = _run(argv, grader_input.working_directory) if argv else None
    except FileNotFoundError:
        logger.warning("Static analysis command not found; skipping: %s", argv[0])
        proc = None
    except subprocess.TimeoutExpired as exc:
        return GraderResult(
            grader="StaticAnalysisGrader",
            score=0.0,
            passed=False,
            details={"error_count": 1, "warning_count": 0, "error": str(exc)},
        )
    if proc is None:
        return GraderResult(
            grader="StaticAnalysisGrader",
            score=1.0,
            passed=True,
            details={"skipped": True, "error_count": 0, "warning_count": 0},
        )

    lines = (proc.stdout + "\n" + proc.stderr).splitlines()
    error_count = sum(1 for line in lines if _ERROR_LINE_RE.search(line))
    warning_count = sum(1 for line in lines if _WARNING_LINE_RE.search(line))
    if proc.returncode != 0:
        score, passed = 0.0, False
        error_count = max(error_count, 1)
    elif warning_count > 0:
        score, passed = 0.5, True
    else:
        score, passed = 1.0, True
    return GraderResult(
        grader="StaticAnalysisGrader",
        score=score,
        passed=passed,
        details={
            "exit_code": proc.returncode,
            "error_count": error_count,
            "warning_count": warning_count,
        },
    )


def grade_test_mutation(grader_input: DeterministicGraderInput) -> GraderResult:
    """0.0 when any protected test file changed since ``base_commit``, else 1.0."""
    try:
        changed = changed_files(grader_input.working_directory, grader_input.base_commit)
    except GitError as exc:
        return GraderResult(
            grader="TestMutationGrader",
            score=0.0,
            passed=False,
            details={"error": str(exc), "modified_test_files": []},
        )
    protected = set(grader_input.test_files)
    modified = [path for path in changed if path in protected]
    passed = not modified
    return GraderResult(
        grader="TestMutationGrader",
        score=1.0 if passed else 0.0,
        passed=passed,
        details={"modified_test_files": modified},
    )


def grade_guard_compliance(grader_input: DeterministicGraderInput) -> GraderResult:
    """Count ``blocked=true`` entries in the guard violations trace; any ⇒ 0.0.

    A missing trace file means no violations. A malformed line raises
    :class:`CollectorError`.
    """
    path = grader_input.working_directory / VIOLATIONS_FILE
    if not path.is_file():
        return GraderResult(
            grader="GuardComplianceGrader",
            score=1.0,
            passed=True,
            details={"violation_count": 0, "violations": []},
        )
    blocked: list[dict] = []
    for number, line in iter_nonblank_lines(path):
        try:
            entry = json.loads(line)
        except json.JSONDecodeError as exc:
            raise CollectorError(f"Invalid JSON in {VIOLATIONS_FILE.name} at line {number}: {line}") from exc
        if isinstance(entry, dict) and entry.get("blocked") is True:
            blocked.append(entry)
    passed = not blocked
    return GraderResult(
        grader="GuardComplianceGrader",
        score=1.0 if passed else 0.0,
        passed=passed,
        details={"violation_count": len(blocked), "violations": blocked},
    )


DETERMINISTIC_GRADERS = {
    "test_runner": grade_test_runner,
    "static_analysis": grade_static_analysis,
    "test_mutation": grade_test_mutation,
    "guard_compliance": grade_guard_compliance,
}


def run_deterministic_graders(grader_input: DeterministicGraderInput) -> dict[str, GraderResult]:
    """Run every deterministic grader, keyed by its composite-weight name."""
    return {name: grader(grader_input) for name, grader in DETERMINISTIC_GRADERS.items()}
