"""Golden dataset loading, filtering, and quick-subset sampling."""

from __future__ import annotations

import json
import logging
import random
from collections.abc import Sequence
from pathlib import Path

from pydantic import ValidationError

from refinement_lab.file_io import iter_nonblank_lines
from refinement_lab.schemas import Difficulty, GoldenDatasetTask, TestType
from refinement_lab.telemetry.collector import CollectorError

logger = logging.getLogger(__name__)

DEFAULT_QUICK_SAMPLE_SIZE = 5


def load_golden_dataset(path: str | Path) -> list[GoldenDatasetTask]:
    """Parse a JSONL file of golden tasks, one task per non-blank line."""
    dataset_path = Path(path)
    try:
        lines = list(iter_nonblank_lines(dataset_path))
    except OSError as exc:
        raise CollectorError(f"Failed to read file: {dataset_path}") from exc

    tasks: list[GoldenDatasetTask] = []
    for index, (_, line) in enumerate(lines, 1):
        try:
            raw = json.loads(line)
        except json.JSONDecodeError as exc:
            raise CollectorError(f"Invalid JSON at line {index}: {line}") from exc
        try:
            tasks.append(GoldenDatasetTask.model_validate(raw))
        except ValidationError as exc:
            raise CollectorError(f"Invalid schema at line {index}: {exc}") from exc
    logger.info("Loaded %d golden tasks from %s", len(tasks), dataset_path)
    return tasks


def filter_by_test_type(tasks: Sequence[GoldenDatasetTask], test_type: TestType) -> list[GoldenDatasetTask]:
    return [task for task in tasks if task.test_type == test_type]


def filter_by_difficulty(
    tasks: Sequence[GoldenDatasetTask], difficulty: Difficulty
) -> list[GoldenDatasetTask]:
    return [task for task in tasks if task.difficulty == difficulty]


def filter_by_ids(tasks: Sequence[GoldenDatasetTask], task_ids: Sequence[str]) -> list[GoldenDatasetTask]:
    wanted = set(task_ids)
    return [task for task in tasks if task.id in wanted]


def sample_quick_subset(
    tasks: Sequence[GoldenDatasetTask],
    count: int,
    rng: random.Random | None = None,
) -> list[GoldenDatasetTask]:
    """Uniform sample of *count* tasks without replacement.

    ``count <= 0`` gives an empty list; ``count >= len(tasks)`` a copy of all tasks.
    """
    if count <= 0:
        return []
    if count >= len(tasks):
        return list(tasks)
    return (rng or random).sample(list(tasks), count)
