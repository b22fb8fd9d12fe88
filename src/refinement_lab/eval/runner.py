"""Evaluation orchestrator: run the golden dataset on control and variant, then decide.

The orchestrator owns no scoring logic. It provisions one isolated
environment per branch, runs every task for the configured number of
trials through an :class:`ExecutionBackend`, grades each execution with the
composite grader, and hands the results to the aggregator, comparator, and
decision policy.
"""

from __future__ import annotations

import abc
import contextlib
import datetime as dt
import logging
import uuid
from collections.abc import Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from refinement_lab.agent_cli import AgentCli
from refinement_lab.config import GraderConfig
from refinement_lab.eval.aggregator import aggregate_trial_results
from refinement_lab.eval.comparator import build_task_comparisons
from refinement_lab.eval.dataset import (
    DEFAULT_QUICK_SAMPLE_SIZE,
    filter_by_ids,
    load_golden_dataset,
    sample_quick_subset,
)
from refinement_lab.eval.decision import MAX_REGRESSION_RATE, make_decision
from refinement_lab.eval.reporter import ExperimentStore
from refinement_lab.git_tools import (
    GitError,
    add_worktree,
    diff_text,
    hash_files,
    head_commit,
    remove_worktree,
    reset_to_ref,
    safe_ref_name,
)
from refinement_lab.graders.composite import grade_composite
from refinement_lab.graders.deterministic import (
    DEFAULT_STATIC_ANALYSIS_CMD,
    DEFAULT_TEST_CMD,
    DeterministicGraderInput,
    run_deterministic_graders,
)
from refinement_lab.graders.llm_judge import evaluate_with_llm_judge
from refinement_lab.schemas import (
    TOTAL_PIPELINE_PHASES,
    ExperimentResult,
    GoldenDatasetTask,
    GraderResult,
    RunReport,
    TaskTrialResult,
    VersionManifest,
)
from refinement_lab.telemetry.collector import CollectorError, TelemetryCollector

logger = logging.getLogger(__name__)

DEFAULT_DATASET_VERSION = "v1"
WORKTREES_DIR = ".eval-worktrees"
AGENTS_SURFACE = Path(".claude") / "agents"
SKILLS_SURFACE = Path(".claude") / "skills"
HOOKS_SURFACE = Path(".claude") / "hooks"
SETTINGS_FILE = Path(".claude") / "settings.json"


@dataclass
class EvalRunConfig:
    dataset_path: Path
    control_ref: str
    variant_ref: str
    trials: int = 1
    hypothesis: str = ""
    variant_description: str = ""
    task_ids: list[str] | None = None
    quick: bool = False
    quick_sample_size: int = DEFAULT_QUICK_SAMPLE_SIZE
    dataset_version: str = DEFAULT_DATASET_VERSION
    grader_config: GraderConfig = field(default_factory=GraderConfig)
    max_regression_rate: float = MAX_REGRESSION_RATE
    parallel: bool = False

    def __post_init__(self) -> None:
        if self.trials < 1:
            raise ValueError(f"trials must be >= 1, got {self.trials}")


@dataclass
class TrialExecution:
    """Raw signal from one trial, before composite grading.

    A crash or timeout is reported through ``exit_code`` and still graded.
    """

    exit_code: int
    duration_ms: float
    grader_results: dict[str, GraderResult] = field(default_factory=dict)
    phases_completed: int = 0
    phases_total: int = TOTAL_PIPELINE_PHASES
    total_tokens: int = 0


# ── Execution ─────────────────────────────────────────────────────


class ExecutionBackend(abc.ABC):
    """Runs one trial of a task inside an already provisioned working directory."""

    @abc.abstractmethod
    def run_trial(self, task: GoldenDatasetTask, workdir: Path, trial: int) -> TrialExecution:
        """Execute *task* once in *workdir* and report exit code, duration, and grader signal."""


class AgentCliBackend(ExecutionBackend):
    """Drive the coding agent, then grade its working copy.

    Every trial starts from a clean checkout: the working directory is reset
    to the commit it held before its first trial, and untracked files
    (including pipeline artifacts) are deleted.

    Parameters
    ----------
    agent:
        Agent CLI wrapper; also used as the LLM judge runner.
    rubrics:
        Optional map of grader name (e.g. ``llm_test_quality``) to rubric file.
        Graders without a rubric are simply absent and weigh in as 0.
    protected_test_files:
        Test files the agent must not modify during the trial.
    """

    def __init__(
        self,
        agent: AgentCli | None = None,
        *,
        test_command: str = DEFAULT_TEST_CMD,
        static_analysis_command: str = DEFAULT_STATIC_ANALYSIS_CMD,
        rubrics: Mapping[str, str | Path] | None = None,
        protected_test_files: Sequence[str] = (),
    ) -> None:
        self.agent = agent or AgentCli()
        self.test_command = test_command
        self.static_analysis_command = static_analysis_command
        self.rubrics = dict(rubrics or {})
        self.protected_test_files = list(protected_test_files)
        self._base_commits: dict[Path, str] = {}

    def _restore(self, workdir: Path) -> str:
        base_commit = self._base_commits.get(workdir)
        if base_commit is None:
            base_commit = self._base_commits[workdir] = head_commit(workdir)
        reset_to_ref(workdir, base_commit)
        return base_commit

    def run_trial(self, task: GoldenDatasetTask, workdir: Path, trial: int) -> TrialExecution:
        base_commit = self._restore(workdir)
        logger.info("Task %s trial %d: running agent in %s", task.id, trial, workdir)
        agent_result = self.agent.run(task.description, workdir)

        grader_results = run_deterministic_graders(
            DeterministicGraderInput(
                working_directory=workdir,
                test_command=self.test_command,
                static_analysis_command=self.static_analysis_command,
                test_files=self.protected_test_files,
                base_commit=base_commit,
            )
        )
        if self.rubrics:
            code = diff_text(workdir, base_commit)
            for name, rubric in self.rubrics.items():
                grader_results[name] = evaluate_with_llm_judge(rubric, code, self.agent, cwd=workdir)

        latest = latest_run_report(workdir)
        phases_completed = 0
        total_tokens = 0
        if latest is not None:
            phases_completed = sum(1 for phase in latest.phases if phase.status == "passed")
            total_tokens = latest.total_tokens or 0
        return TrialExecution(
            exit_code=agent_result.exit_code,
            duration_ms=agent_result.duration_ms,
            grader_results=grader_results,
            phases_completed=phases_completed,
            total_tokens=total_tokens,
        )


def latest_run_report(workdir: Path) -> RunReport | None:
    """Newest run report the pipeline wrote under ``<workdir>/artifacts``.

    Unreadable reports count as no progress; the trial is still graded.
    """
    try:
        reports = TelemetryCollector(workdir / "artifacts").read_run_reports()
    except CollectorError as exc:
        logger.warning("Ignoring unreadable run reports in %s: %s", workdir, exc)
        return None
    return reports[0] if reports else None


# ── Environments ──────────────────────────────────────────────────


def collect_files(directory: Path) -> list[Path]:
    """Every file below *directory*, sorted; empty when it does not exist."""
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.rglob("*") if p.is_file())


def snapshot_manifest(path: str | Path, dataset_version: str) -> VersionManifest:
    """Hash the agent configuration surface of the checkout at *path*."""
    root = Path(path)
    return VersionManifest(
        agent_prompts_hash=hash_files(collect_files(root / AGENTS_SURFACE)),
        skill_hash=hash_files(collect_files(root / SKILLS_SURFACE)),
        hooks_hash=hash_files(collect_files(root / HOOKS_SURFACE)),
        settings_hash=hash_files([root / SETTINGS_FILE]),
        dataset_version=dataset_version,
    )


class EnvironmentProvider(abc.ABC):
    """Creates and tears down isolated checkouts of a named ref."""

    @abc.abstractmethod
    def provision(self, name: str, ref: str) -> contextlib.AbstractContextManager[Path]:
        """Return a context manager yielding a working directory for *ref*."""

    def fingerprint(self, path: Path, dataset_version: str) -> VersionManifest:
        return snapshot_manifest(path, dataset_version)


class GitWorktreeProvider(EnvironmentProvider):
    """One ``git worktree`` per environment under ``<repo>/.eval-worktrees/<name>-<ref>``."""

    def __init__(self, repo: str | Path, base_dir: str | Path | None = None) -> None:
        self.repo = Path(repo)
        self.base_dir = Path(base_dir) if base_dir is not None else self.repo / WORKTREES_DIR

    @contextlib.contextmanager
    def provision(self, name: str, ref: str) -> Iterator[Path]:
        path = self.base_dir / f"{name}-{safe_ref_name(ref)}"
        logger.info("Provisioning %s environment for %s at %s", name, ref, path)
        add_worktree(self.repo, path, ref)
        try:
            yield path
        finally:
            try:
                remove_worktree(self.repo, path)
            except GitError as exc:
                logger.warning("Could not remove %s worktree %s: %s", name, path, exc)


# ── Orchestration ─────────────────────────────────────────────────


def run_trials(
    tasks: Sequence[GoldenDatasetTask],
    workdir: Path,
    backend: ExecutionBackend,
    grader_config: GraderConfig,
    trials: int,
) -> list[TaskTrialResult]:
    """Run every task *trials* times and grade each execution."""
    results: list[TaskTrialResult] = []
    for task in tasks:
        for trial in range(trials):
            execution = backend.run_trial(task, workdir, trial)
            composite = grade_composite(
                grader_config,
                execution.grader_results,
                execution.phases_completed,
                execution.phases_total,
            )
            results.append(
                TaskTrialResult(
                    task_id=task.id,
                    trial=trial,
                    composite_result=composite,
                    duration_ms=execution.duration_ms,
                    exit_code=execution.exit_code,
                    total_tokens=execution.total_tokens,
                )
            )
            logger.debug(
                "Task %s trial %d: exit=%d score=%.3f",
                task.id,
                trial,
                execution.exit_code,
                composite.overall_score,
            )
    return results


@dataclass
class BranchRun:
    results: list[TaskTrialResult]
    manifest: VersionManifest


def run_branch(
    name: str,
    ref: str,
    tasks: Sequence[GoldenDatasetTask],
    config: EvalRunConfig,
    backend: ExecutionBackend,
    provider: EnvironmentProvider,
) -> BranchRun:
    """Provision *ref*, fingerprint it while it exists, run the trials, tear it down."""
    with provider.provision(name, ref) as workdir:
        manifest = provider.fingerprint(workdir, config.dataset_version)
        results = run_trials(tasks, workdir, backend, config.grader_config, config.trials)
    logger.info("%s (%s): %d trial results", name, ref, len(results))
    return BranchRun(results=results, manifest=manifest)


def new_experiment_id(now: dt.datetime | None = None) -> str:
    """``exp-YYYY-MM-DD-<8 hex>``."""
    moment = now or dt.datetime.now(dt.timezone.utc)
    return f"exp-{moment.strftime('%Y-%m-%d')}-{uuid.uuid4().hex[:8]}"


def select_tasks(config: EvalRunConfig) -> list[GoldenDatasetTask]:
    tasks = load_golden_dataset(config.dataset_path)
    if config.task_ids:
        tasks = filter_by_ids(tasks, config.task_ids)
    if config.quick:
        tasks = sample_quick_subset(tasks, config.quick_sample_size)
    return tasks


def run_eval(
    config: EvalRunConfig,
    backend: ExecutionBackend,
    provider: EnvironmentProvider,
    store: ExperimentStore | None = None,
) -> ExperimentResult:
    """Run a full A/B experiment and persist it through *store* when given."""
    tasks = select_tasks(config)
    if not tasks:
        logger.warning("No tasks selected from %s; metrics will be all zero", config.dataset_path)
    logger.info(
        "Evaluating %d task(s) x %d trial(s): control=%s variant=%s",
        len(tasks),
        config.trials,
        config.control_ref,
        config.variant_ref,
    )

    if config.parallel:
        with ThreadPoolExecutor(max_workers=2) as pool:
            control_future = pool.submit(
                run_branch, "control", config.control_ref, tasks, config, backend, provider
            )
            variant_future = pool.submit(
                run_branch, "variant", config.variant_ref, tasks, config, backend, provider
            )
            control, variant = control_future.result(), variant_future.result()
    else:
        control = run_branch("control", config.control_ref, tasks, config, backend, provider)
        variant = run_branch("variant", config.variant_ref, tasks, config, backend, provider)

    control_metrics = aggregate_trial_results(control.results, len(tasks), config.trials)
    variant_metrics = aggregate_trial_results(variant.results, len(tasks), config.trials)
    comparisons = build_task_comparisons(control.results, variant.results)
    decision, rationale = make_decision(
        control_metrics,
        variant_metrics,
        comparisons,
        max_regression_rate=config.max_regression_rate,
    )

    result = ExperimentResult(
        experiment_id=new_experiment_id(),
        hypothesis=config.hypothesis,
        variant_description=config.variant_description,
        dataset_version=config.dataset_version,
        control_config=control.manifest,
        variant_config=variant.manifest,
        control_results=control_metrics,
        variant_results=variant_metrics,
        per_task_comparison=comparisons,
        decision=decision,
        decision_rationale=rationale,
    )
    if store is not None:
        store.save(result)
    return result
