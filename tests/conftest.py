# tests/conftest.py
"""
Shared fixtures.

Legs never run real cargo here: a scripted executor records every command
and answers with exit codes chosen per (environment, command fragment).
"""
from __future__ import annotations

import io
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from matrixci.errors import EnvironmentUnavailable
from matrixci.executor import CommandResult
from matrixci.model import Leg, TriggerEvent
from matrixci.runner import load_workflow
from matrixci.ui.console import Console

ROOT = Path(__file__).resolve().parents[1]
OSES = ("ubuntu-latest", "windows-latest", "macos-latest")


class ScriptedExecutor:
    def __init__(self, factory: "FakeFactory", environment: str):
        self.factory = factory
        self.environment = environment

    def run(self, cmd, *, cwd, env, cancel=None) -> CommandResult:
        with self.factory.lock:
            self.factory.calls.append((self.environment, cmd, dict(env)))
        hook = self.factory.hook
        if hook is not None:
            res = hook(self.environment, cmd, cancel)
            if res is not None:
                return res
        code = 0
        for (environment, fragment), exit_code in self.factory.failures.items():
            if environment in (self.environment, "*") and fragment in cmd:
                code = exit_code
        return CommandResult(exit_code=code, output=f"$ {cmd}\n")


class FakeFactory:
    """
    failures: {(environment or "*", command fragment): exit code}
    hook:     optional (environment, cmd, cancel) -> CommandResult | None,
              called before the scripted answer
    """

    def __init__(
        self,
        failures: Optional[Dict[Tuple[str, str], int]] = None,
        unavailable: Tuple[str, ...] = (),
        hook=None,
    ):
        self.failures = dict(failures or {})
        self.unavailable = unavailable
        self.hook = hook
        self.lock = threading.Lock()
        self.calls: List[Tuple[str, str, dict]] = []

    def __call__(self, leg: Leg):
        if leg.environment in self.unavailable:
            raise EnvironmentUnavailable(job=leg.job, environment=leg.environment, host="test")
        return ScriptedExecutor(self, leg.environment)

    def commands(self, environment: str) -> List[str]:
        return [cmd for env, cmd, _ in self.calls if env == environment]

    def env_for(self, environment: str, fragment: str) -> dict:
        for env, cmd, step_env in self.calls:
            if env == environment and fragment in cmd:
                return step_env
        raise KeyError(fragment)


@pytest.fixture
def fake_factory():
    return FakeFactory


@pytest.fixture
def quiet_console():
    return Console(stream=io.StringIO())


@pytest.fixture
def manga_pipeline():
    return load_workflow(ROOT / "matrixci_workflow.py")


@pytest.fixture
def rust_repo(tmp_path, monkeypatch):
    """A minimal cargo project layout; HOME points inside tmp_path so ~/.cargo stays sandboxed."""
    repo = tmp_path / "repo"
    repo.mkdir()
    (repo / "Cargo.toml").write_text('[package]\nname = "manga-tui"\nversion = "0.1.0"\n', encoding="utf-8")
    (repo / "Cargo.lock").write_text("version = 3\n", encoding="utf-8")
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    return repo


@pytest.fixture
def push_main():
    return TriggerEvent(event_type="push", target_branch="main", sha="a" * 40)


@pytest.fixture
def pr_main():
    return TriggerEvent(event_type="pull_request", target_branch="main", sha="b" * 40)
