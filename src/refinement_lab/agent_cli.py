"""Non-interactive wrapper around the coding-agent CLI (``claude -p``)."""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_AGENT_BINARY = "claude"
AGENT_BINARY_ENV = "REFINEMENT_LAB_AGENT_BINARY"


@dataclass(frozen=True, slots=True)
class AgentCliResult:
    """Outcome of one agent invocation.

    Launch failures and timeouts are reported here with ``exit_code == -1``
    rather than raised, so callers can score them as poor outcomes.
    """

    exit_code: int
    stdout: str
    stderr: str
    duration_ms: float
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class AgentCli:
    """Spawn ``<binary> -p <prompt>`` in a working directory and capture its output.

    Parameters
    ----------
    binary:
        Agent executable; defaults to ``$REFINEMENT_LAB_AGENT_BINARY`` or ``claude``.
    timeout:
        Wall-clock limit in seconds; ``None`` waits indefinitely.
    """

    def __init__(self, binary: str | None = None, timeout: float | None = None) -> None:
        self.binary = binary or os.environ.get(AGENT_BINARY_ENV) or DEFAULT_AGENT_BINARY
        self.timeout = timeout

    def build_command(self, prompt: str, *, max_turns: int | None = None) -> list[str]:
        cmd = [self.binary, "-p", prompt]
        if max_turns is not None:
            cmd.extend(["--max-turns", str(max_turns)])
        return cmd

    def run(
        self,
        prompt: str,
        cwd: str | Path,
        *,
        max_turns: int | None = None,
    ) -> AgentCliResult:
        """Run the agent once and return its exit code, output, and duration."""
        cmd = self.build_command(prompt, max_turns=max_turns)
        logger.info(
            "Running agent CLI %s (cwd=%s, prompt_len=%d, max_turns=%s)",
            self.binary,
            cwd,
            len(prompt),
            max_turns,
        )
        start = time.monotonic()
        try:
            proc = subprocess.run(
                cmd,
                cwd=Path(cwd),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            return AgentCliResult(
                exit_code=-1,
                stdout="",
                stderr=f"Agent binary not found: {exc}",
                duration_ms=_elapsed_ms(start),
            )
        except subprocess.TimeoutExpired as exc:
            logger.warning("Agent CLI timed out after %ss (cwd=%s)", self.timeout, cwd)
            return AgentCliResult(
                exit_code=-1,
                stdout=_as_text(exc.stdout),
                stderr=f"Timeout of {self.timeout}s exceeded",
                duration_ms=_elapsed_ms(start),
                timed_out=True,
            )
        duration = _elapsed_ms(start)
        if proc.returncode != 0:
            logger.warning("Agent CLI exited with code %d", proc.returncode)
        return AgentCliResult(
            exit_code=proc.returncode,
            stdout=proc.stdout,
            stderr=proc.stderr,
            duration_ms=duration,
        )


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000.0


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
