"""Git helpers: changed files, worktrees, and content hashing."""

from __future__ import annotations

import hashlib
import logging
import re
import subprocess
from collections.abc import Iterable
from pathlib import Path

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 30

_UNSAFE_REF_CHARS = re.compile(r"[^a-zA-Z0-9-]")


class GitError(RuntimeError):
    """Raised when a git command fails unexpectedly."""


def _run_git(
    *args: str,
    cwd: Path,
    check: bool = True,
    timeout: int = GIT_TIMEOUT_SECONDS,
) -> subprocess.CompletedProcess[str]:
    """Run a git command and return the CompletedProcess."""
    cmd = ["git", *args]
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        raise GitError(f"`git {' '.join(args)}` timed out after {timeout}s") from exc
    if check and result.returncode != 0:
        raise GitError(
            f"`git {' '.join(args)}` failed (rc={result.returncode}): {result.stderr.strip()}"
        )
    return result


def changed_files(repo: str | Path, base_ref: str) -> list[str]:
    """Return paths changed between *base_ref* and HEAD (``git diff --name-only base...HEAD``)."""
    out = _run_git("diff", "--name-only", f"{base_ref}...HEAD", cwd=Path(repo)).stdout
    return [line.strip() for line in out.splitlines() if line.strip()]


def safe_ref_name(ref: str) -> str:
    """Turn a branch name into a directory-safe token."""
    return _UNSAFE_REF_CHARS.sub("-", ref)


def add_worktree(repo: str | Path, path: str | Path, ref: str) -> Path:
    """Check out *ref* into a new worktree at *path*."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    _run_git("worktree", "add", str(target), ref, cwd=Path(repo), timeout=120)
    logger.info("Created worktree for %s at %s", ref, target)
    return target


def remove_worktree(repo: str | Path, path: str | Path) -> None:
    """Force-remove the worktree at *path*."""
    _run_git("worktree", "remove", str(path), "--force", cwd=Path(repo), timeout=120)
    logger.info("Removed worktree %s", path)


def reset_to_ref(repo: str | Path, ref: str) -> None:
    """Hard-reset *repo* to *ref* and delete every untracked or ignored file."""
    cwd = Path(repo)
    _run_git("reset", "--hard", ref, cwd=cwd)
    _run_git("clean", "-fdx", cwd=cwd)
    logger.debug("Reset %s to %s", cwd, ref)


def hash_files(paths: Iterable[str | Path]) -> str:
    """SHA-256 over the concatenated bytes of *paths*, in the given order.

    Missing files contribute nothing, so an empty or absent surface hashes to
    the digest of empty input.
    """
    digest = hashlib.sha256()
    for path in paths:
        file_path = Path(path)
        if not file_path.is_file():
            continue
        digest.update(file_path.read_bytes())
    return digest.hexdigest()


def head_commit(repo: str | Path) -> str:
    """Return the full SHA of HEAD."""
    return _run_git("rev-parse", "HEAD", cwd=Path(repo)).stdout.strip()


def diff_text(repo: str | Path, base_ref: str) -> str:
    """Return ``git diff <base_ref>`` for the working tree, including uncommitted edits."""
    return _run_git("diff", base_ref, cwd=Path(repo)).stdout
