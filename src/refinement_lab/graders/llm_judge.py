"""Rubric-driven LLM judge grader.

The judge receives a markdown rubric plus the code under review and is asked
to answer with JSON: one numeric field per rubric dimension, a ``total``, and
a ``rationale``. The score is ``total / (dimensions * max_dimension_value)``.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

from refinement_lab.agent_cli import AgentCliResult
from refinement_lab.schemas import GraderResult

logger = logging.getLogger(__name__)

GRADER_NAME = "LlmJudgeGrader"

_JSON_FENCE_RE = re.compile(r"```json\s*([\s\S]*?)\s*```")
_NON_DIMENSION_KEYS = frozenset({"total", "rationale"})


class JudgeRunner(Protocol):
    def run(self, prompt: str, cwd: str | Path, *, max_turns: int | None = None) -> AgentCliResult: ...


def _fail(details: dict[str, Any]) -> GraderResult:
    return GraderResult(grader=GRADER_NAME, score=0.0, passed=False, details=details)


def extract_json(text: str) -> str:
    """Return the body of the first fenced ```json block, or *text* unchanged."""
    match = _JSON_FENCE_RE.search(text)
    return match.group(1) if match else text


def normalize_score(parsed: Mapping[str, Any]) -> float:
    """Scale ``total`` by the largest possible total implied by the dimensions."""
    dimensions = [
        value
        for key, value in parsed.items()
        if key not in _NON_DIMENSION_KEYS
        and isinstance(value, (int, float))
        and not isinstance(value, bool)
    ]
    if not dimensions:
        return 0.0
    max_score = len(dimensions) * max(dimensions)
    if max_score <= 0:
        return 0.0
    total = parsed.get("total")
    if not isinstance(total, (int, float)) or isinstance(total, bool):
        return 0.0
    return max(0.0, min(1.0, total / max_score))


def assemble_prompt(rubric: str, code: str, context_files: Mapping[str, str] | None = None) -> str:
    prompt = f"{rubric}\n\n## Code to Evaluate\n\n{code}"
    for filename, content in (context_files or {}).items():
        prompt += f"\n\n## Context: {filename}\n\n{content}"
    return prompt


def evaluate_with_llm_judge(
    rubric_path: str | Path,
    code_to_evaluate: str,
    runner: JudgeRunner,
    *,
    context_files: Mapping[str, str] | None = None,
    cwd: str | Path = ".",
) -> GraderResult:
    """Ask the judge to grade *code_to_evaluate* against the rubric at *rubric_path*.

    Every failure mode yields a zero score with the reason in ``details``.
    """
    try:
        rubric = Path(rubric_path).read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not read rubric %s: %s", rubric_path, exc)
        return _fail({"skipped": True, "error": f"Failed to read rubric: {exc}"})

    prompt = assemble_prompt(rubric, code_to_evaluate, context_files)
    result = runner.run(prompt, cwd, max_turns=1)
    if result.exit_code != 0:
        return _fail(
            {
                "skipped": True,
                "error": f"Judge exited with code {result.exit_code}: {result.stderr}",
            }
        )

    try:
        parsed = json.loads(extract_json(result.stdout))
    except json.JSONDecodeError as exc:
        return _fail({"parse_error": True, "error": str(exc)})
    if not isinstance(parsed, dict):
        return _fail({"parse_error": True, "error": "judge response is not a JSON object"})

    score = normalize_score(parsed)
    return GraderResult(
        grader=GRADER_NAME,
        score=score,
        passed=score >= 0.5,
        details={"rationale": parsed.get("rationale"), "raw_response": result.stdout},
    )
