"""Tests for golden dataset loading and sampling."""

from __future__ import annotations

import random
from pathlib import Path

import pytest

from helpers import make_task_record, write_jsonl
from refinement_lab.eval.dataset import (
    filter_by_difficulty,
    filter_by_ids,
    filter_by_test_type,
    load_golden_dataset,
    sample_quick_subset,
)
from refinement_lab.telemetry import CollectorError


@pytest.fixture
def dataset(tmp_path: Path) -> Path:
    return write_jsonl(
        tmp_path / "golden.jsonl",
        [
            make_task_record("t1"),
            "",
            make_task_record("t2", test_type="integration", difficulty="hard"),
            make_task_record("t3", difficulty="adversarial"),
        ],
    )


@pytest.mark.integration
class TestLoadGoldenDataset:
    def test_loads_every_non_blank_line(self, dataset: Path) -> None:
        tasks = load_golden_dataset(dataset)
        assert [t.id for t in tasks] == ["t1", "t2", "t3"]
        assert tasks[0].acceptance.tests_must_fail_initially is True

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(CollectorError, match="Failed to read file"):
            load_golden_dataset(tmp_path / "missing.jsonl")

    def test_bad_json_names_the_line(self, tmp_path: Path) -> None:
        path = write_jsonl(tmp_path / "golden.jsonl", [make_task_record("t1"), "{nope"])
        with pytest.raises(CollectorError, match="Invalid JSON at line 2"):
            load_golden_dataset(path)

    def test_bad_schema_names_the_line(self, tmp_path: Path) -> None:
        path = write_jsonl(tmp_path / "golden.jsonl", [make_task_record("t1", difficulty="trivial")])
        with pytest.raises(CollectorError, match="Invalid schema at line 1"):
            load_golden_dataset(path)


@pytest.mark.unit
class TestFiltersAndSampling:
    def test_filters(self, dataset: Path) -> None:
        tasks = load_golden_dataset(dataset)
        assert [t.id for t in filter_by_test_type(tasks, "integration")] == ["t2"]
        assert [t.id for t in filter_by_difficulty(tasks, "adversarial")] == ["t3"]
        assert [t.id for t in filter_by_ids(tasks, ["t3", "t1", "zzz"])] == ["t1", "t3"]

    def test_sample_bounds(self, dataset: Path) -> None:
        tasks = load_golden_dataset(dataset)
        assert sample_quick_subset(tasks, 0) == []
        assert sample_quick_subset(tasks, -2) == []
        everything = sample_quick_subset(tasks, 10)
        assert everything == tasks
        assert everything is not tasks

    def test_sample_without_replacement(self, dataset: Path) -> None:
        tasks = load_golden_dataset(dataset)
        sample = sample_quick_subset(tasks, 2, rng=random.Random(7))
        assert len(sample) == 2
        assert len({t.id for t in sample}) == 2
        assert sample == sample_quick_subset(tasks, 2, rng=random.Random(7))
