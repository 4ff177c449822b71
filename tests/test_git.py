# tests/test_git.py
from __future__ import annotations

import shutil
import subprocess

import pytest

from matrixci.cli import resolve_event
from matrixci.git_facts.git import local_push_event

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _git(cwd, *args):
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


@pytest.fixture
def checkout(tmp_path):
    _git(tmp_path, "init", "-q", "-b", "main")
    _git(tmp_path, "-c", "user.name=ci", "-c", "user.email=ci@example.com", "commit", "-q", "--allow-empty", "-m", "init")
    return tmp_path


def test_local_push_event_uses_current_branch_and_head(checkout):
    ev = local_push_event(checkout)
    assert ev.event_type == "push"
    assert ev.target_branch == "main"
    assert ev.sha and len(ev.sha) == 40


def test_resolve_event_defaults_to_local_push(checkout, monkeypatch):
    monkeypatch.chdir(checkout)
    assert resolve_event(None, None, None, None).target_branch == "main"
    ev = resolve_event("pull_request", None, None, "abc")
    assert (ev.event_type, ev.target_branch, ev.sha) == ("pull_request", "main", "abc")
