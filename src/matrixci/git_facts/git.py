# git.py
# Small, focused wrapper around the Git CLI.
# Used to build the default trigger event for local runs: a push of the
# current branch at HEAD.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional

from ..model import TriggerEvent


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Full SHA of HEAD."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str | Path] = None) -> str:
    """
    Name of the checked-out branch.

    On a detached HEAD git prints "HEAD"; that is returned as-is so it never
    matches a branch filter.
    """
    return _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)


def local_push_event(cwd: Optional[str | Path] = None) -> TriggerEvent:
    """The event a push of the current branch would produce."""
    try:
        sha: Optional[str] = head_sha(cwd)
    except subprocess.CalledProcessError:
        # no commits yet
        sha = None
    return TriggerEvent(event_type="push", target_branch=current_branch(cwd), sha=sha)
