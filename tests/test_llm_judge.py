"""Tests for the rubric-driven LLM judge."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from refinement_lab.agent_cli import AgentCliResult
from refinement_lab.graders.llm_judge import (
    assemble_prompt,
    evaluate_with_llm_judge,
    extract_json,
    normalize_score,
)

pytestmark = pytest.mark.unit


def _runner(stdout: str = "", exit_code: int = 0, stderr: str = "") -> MagicMock:
    runner = MagicMock()
    runner.run.return_value = AgentCliResult(exit_code=exit_code, stdout=stdout, stderr=stderr, duration_ms=5.0)
    return runner


@pytest.fixture
def rubric(tmp_path: Path) -> Path:
    path = tmp_path / "test-quality.md"
    path.write_text("# Test quality\nScore each dimension 0-5.", encoding="utf-8")
    return path


def test_extract_json_prefers_fenced_block() -> None:
    text = 'Here you go:\n```json\n{"total": 3}\n```\nthanks'
    assert extract_json(text) == '{"total": 3}'
    assert extract_json('{"total": 3}') == '{"total": 3}'


def test_normalize_score_uses_dimension_count_and_max() -> None:
    assert normalize_score({"clarity": 4, "coverage": 5, "total": 9, "rationale": "ok"}) == pytest.approx(0.9)
    assert normalize_score({"total": 3, "rationale": "no dims"}) == 0.0
    assert normalize_score({"a": 2, "b": 2, "total": 10}) == 1.0


def test_assemble_prompt_appends_context_files() -> None:
    prompt = assemble_prompt("RUBRIC", "CODE", {"tests/test_a.py": "TESTS"})
    assert prompt.index("RUBRIC") < prompt.index("## Code to Evaluate") < prompt.index("## Context: tests/test_a.py")


def test_successful_evaluation(rubric: Path, tmp_path: Path) -> None:
    reply = "```json\n" + json.dumps({"clarity": 4, "coverage": 4, "total": 6, "rationale": "fine"}) + "\n```"
    runner = _runner(reply)

    result = evaluate_with_llm_judge(rubric, "def f(): pass", runner, cwd=tmp_path)

    assert result.score == pytest.approx(0.75)
    assert result.passed is True
    assert result.details["rationale"] == "fine"
    assert runner.run.call_args.kwargs["max_turns"] == 1


def test_unreadable_rubric_scores_zero(tmp_path: Path) -> None:
    runner = _runner()
    result = evaluate_with_llm_judge(tmp_path / "missing.md", "code", runner)
    assert result.score == 0.0
    assert result.details["skipped"] is True
    runner.run.assert_not_called()


def test_nonzero_exit_scores_zero(rubric: Path) -> None:
    result = evaluate_with_llm_judge(rubric, "code", _runner(exit_code=2, stderr="rate limited"))
    assert result.score == 0.0
    assert "rate limited" in result.details["error"]


def test_unparseable_reply_scores_zero(rubric: Path) -> None:
    result = evaluate_with_llm_judge(rubric, "code", _runner("I think it is good."))
    assert result.score == 0.0
    assert result.details["parse_error"] is True
