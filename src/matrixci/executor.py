# executor.py
from __future__ import annotations

import os
import signal
import subprocess
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Protocol

from .errors import EnvironmentUnavailable
from .model import Leg

# runs-on label prefix -> platform family
_OS_FAMILIES = {
    "ubuntu": "linux",
    "linux": "linux",
    "windows": "windows",
    "macos": "macos",
}


def os_family(environment: str) -> str:
    label = environment.lower()
    for prefix, family in _OS_FAMILIES.items():
        if label.startswith(prefix):
            return family
    return label


def host_family() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    return "linux"


@dataclass
class CommandResult:
    exit_code: int
    output: str
    cancelled: bool = False


class Executor(Protocol):
    """Runs shell commands for one leg, inside that leg's environment."""

    def run(
        self,
        cmd: str,
        *,
        cwd: Path,
        env: Mapping[str, str],
        cancel: Optional[threading.Event] = None,
    ) -> CommandResult:
        ...


class LocalExecutor:
    """
    Runs commands on this machine through the shell.

    Output (stdout + stderr) is captured and returned. When `cancel` is set
    while a command runs, the process is terminated.
    """

    def __init__(self, poll_interval: float = 0.1, inherit_env: bool = True):
        self.poll_interval = poll_interval
        self.inherit_env = inherit_env

    def run(self, cmd, *, cwd, env, cancel=None) -> CommandResult:
        if not Path(cwd).exists():
            raise FileNotFoundError(f"cwd not found: {cwd}")

        full_env: Dict[str, str] = os.environ.copy() if self.inherit_env else {}
        full_env.update(env)

        proc = subprocess.Popen(
            cmd,
            shell=True,
            cwd=str(cwd),
            env=full_env,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            # own process group, so cancel reaches cargo's children too
            start_new_session=(os.name == "posix"),
        )

        chunks: list[str] = []
        reader = threading.Thread(target=lambda: chunks.append(proc.stdout.read()), daemon=True)
        reader.start()

        cancelled = False
        while True:
            try:
                proc.wait(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_set():
                    cancelled = True
                    _signal(proc, signal.SIGTERM)
                    try:
                        proc.wait(timeout=5)
                    except subprocess.TimeoutExpired:
                        _signal(proc, signal.SIGKILL if os.name == "posix" else signal.SIGTERM)
                        proc.wait()
                    break

        reader.join()
        return CommandResult(exit_code=proc.returncode, output="".join(chunks), cancelled=cancelled)


def _signal(proc: subprocess.Popen, sig: int) -> None:
    if os.name != "posix":
        proc.terminate()
        return
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass


ExecutorFactory = Callable[[Leg], Executor]


def host_executor_factory(leg: Leg) -> Executor:
    """
    Default factory: legs whose runs-on label belongs to this host's OS
    family run locally; anything else is unavailable here.
    """
    family = os_family(leg.environment)
    host = host_family()
    if family != host:
        raise EnvironmentUnavailable(job=leg.job, environment=leg.environment, host=host)
    return LocalExecutor()
