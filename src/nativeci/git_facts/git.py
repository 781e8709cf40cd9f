# git.py
# Small wrapper around the Git CLI, used to find the repository root that
# component directories are resolved against.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises CalledProcessError on a non-zero exit and FileNotFoundError when
    git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def repo_root(cwd: Optional[str] = None) -> Path:
    """Absolute path of the enclosing Git repository's root."""
    # `git rev-parse --show-toplevel` prints the root from anywhere inside the repo
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def find_repo_root(cwd: Optional[str] = None) -> Path:
    """Like repo_root(), but falls back to the working directory outside a repo."""
    try:
        return repo_root(cwd)
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path(cwd or ".").resolve()
