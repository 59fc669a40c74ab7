# git.py
# Thin wrapper around the Git CLI.
# Everything in stepci that talks to git goes through here, so nothing else
# has to build `git ...` command lines by hand.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional


class GitError(RuntimeError):
    """Raised when a git command exits non-zero."""


def _git(args: List[str], cwd: Optional[Path] = None, timeout: Optional[float] = None) -> str:
    """
    Run a git command and return its stdout, stripped.

    Args:
        args: git arguments, e.g. ["rev-parse", "HEAD"]
        cwd: directory to run in (defaults to the current directory)
        timeout: seconds before the command is killed (no limit by default)

    Returns:
        Stdout of the command without surrounding whitespace.

    Raises:
        GitError: if git exits non-zero (stderr is included in the message)
        FileNotFoundError: if git is not installed
        subprocess.TimeoutExpired: if `timeout` elapses
    """
    proc = subprocess.run(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        capture_output=True,
        timeout=timeout,
    )
    if proc.returncode != 0:
        raise GitError(f"git {' '.join(args)} failed (exit={proc.returncode}): {proc.stderr.strip()}")
    return proc.stdout.strip()


def is_work_tree(path: Path) -> bool:
    """True if `path` is inside a git work tree."""
    if not path.exists():
        return False
    try:
        return _git(["rev-parse", "--is-inside-work-tree"], cwd=path) == "true"
    except GitError:
        return False


def repo_root(cwd: Optional[Path] = None) -> Path:
    """Absolute path of the repository containing `cwd`."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[Path] = None) -> str:
    """Full SHA of HEAD."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def get_remote_url(remote: str = "origin", cwd: Optional[Path] = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)


def get_current_ref(cwd: Optional[Path] = None) -> str:
    """
    Current branch name, or the HEAD sha when detached.
    """
    ref = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if ref == "HEAD":
        return head_sha(cwd)
    return ref


def clone(repo_url: str, dest: Path, ref: Optional[str] = None, timeout: Optional[float] = None) -> Path:
    """
    Clone `repo_url` into `dest` and check out `ref` when given.

    `dest` may exist but must be empty.
    """
    dest.mkdir(parents=True, exist_ok=True)
    if any(dest.iterdir()):
        raise GitError(f"Cannot clone into non-empty directory: {dest}")

    _git(["clone", repo_url, str(dest)], timeout=timeout)
    if ref:
        _git(["checkout", ref], cwd=dest, timeout=timeout)
    return dest
