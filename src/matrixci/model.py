# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class StepKind(str, Enum):
    """What a step checks. Drives how a failing step is classified."""
    SHELL = "shell"
    FORMAT = "format"
    LINT = "lint"
    LOCK_CHECK = "lock_check"
    BUILD = "build"
    TEST = "test"


class Status(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str
    cwd: str | None = None
    kind: StepKind = StepKind.SHELL
    env: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Toolchain:
    """A pinned toolchain request, e.g. rust nightly-2024-06-25."""
    name: str
    version: str
    components: Tuple[str, ...] = ()

    @property
    def identifier(self) -> str:
        return f"{self.name}-{self.version}"


@dataclass(frozen=True)
class CacheSpec:
    """
    Dependency cache settings for a job.

    paths:          dirs/files to store and restore (may start with ~)
    key_files:      globs whose content fingerprints the dependency set
    restore_prefix: fall back to the newest entry for the same
                    job/environment/toolchain when the exact key misses
    """
    paths: Tuple[str, ...]
    key_files: Tuple[str, ...] = ("Cargo.lock", "**/Cargo.toml")
    enabled: bool = True
    keep: int = 3
    restore_prefix: bool = True


@dataclass(frozen=True)
class Matrix:
    """One configuration axis, e.g. os in [ubuntu-latest, windows-latest]."""
    key: str
    values: Tuple[str, ...]


@dataclass(frozen=True)
class Strategy:
    """
    How a job fans out. fail_fast defaults to False: a failing leg is
    recorded but its siblings keep running.
    """
    matrix: Matrix
    fail_fast: bool = False


@dataclass(frozen=True)
class Trigger:
    event_type: str
    branches: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TriggerEvent:
    """The repository activity that started a run. target_branch is the
    pushed branch for push events and the base branch for pull requests."""
    event_type: str
    target_branch: str
    sha: Optional[str] = None


@dataclass
class Job:
    """
    A CI job: ordered steps + dependencies + environment/toolchain/cache.

    runs_on may reference matrix keys, e.g. "{os}".
    """
    name: str
    steps: list[Step]
    needs: list[str] = field(default_factory=list)
    runs_on: str = "ubuntu-latest"
    display_name: Optional[str] = None
    strategy: Optional[Strategy] = None
    toolchain: Optional[Toolchain] = None
    cache: Optional[CacheSpec] = None
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def title(self) -> str:
        return self.display_name or self.name


@dataclass(frozen=True)
class Leg:
    """One concrete execution instance of a job."""
    job: str
    index: int
    values: Tuple[Tuple[str, str], ...]
    environment: str

    @property
    def id(self) -> str:
        if not self.values:
            return self.job
        return f"{self.job} ({', '.join(v for _, v in self.values)})"

    @property
    def matrix(self) -> Dict[str, str]:
        return dict(self.values)


@dataclass
class Pipeline:
    name: str
    jobs: list[Job]
    triggers: list[Trigger] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)

    def job(self, name: str) -> Job:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass
class StepResult:
    name: str
    kind: StepKind
    status: Status
    exit_code: Optional[int] = None
    duration: float = 0.0
    output: str = ""


@dataclass
class LegResult:
    leg: Leg
    status: Status
    steps: list[StepResult] = field(default_factory=list)
    error_kind: Optional[str] = None
    error: Optional[str] = None
    cache: Optional[str] = None  # "hit" | "partial" | "miss" | None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == Status.SUCCESS

    def step(self, name: str) -> StepResult:
        for s in self.steps:
            if s.name == name:
                return s
        raise KeyError(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leg": self.leg.id,
            "environment": self.leg.environment,
            "matrix": self.leg.matrix,
            "status": self.status.value,
            "error_kind": self.error_kind,
            "error": self.error,
            "cache": self.cache,
            "duration": round(self.duration, 3),
            "steps": [
                {
                    "name": s.name,
                    "kind": s.kind.value,
                    "status": s.status.value,
                    "exit_code": s.exit_code,
                }
                for s in self.steps
            ],
        }


@dataclass
class JobResult:
    job: str
    legs: list[LegResult] = field(default_factory=list)
    status: Status = Status.SKIPPED
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == Status.SUCCESS

    def leg(self, environment: str) -> LegResult:
        for lr in self.legs:
            if lr.leg.environment == environment:
                return lr
        raise KeyError(environment)


@dataclass
class PipelineResult:
    pipeline: str
    event: TriggerEvent
    triggered: bool
    jobs: Dict[str, JobResult] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def status(self) -> Status:
        if not self.triggered:
            return Status.SKIPPED
        if self.jobs and all(j.ok and all(lr.ok for lr in j.legs) for j in self.jobs.values()):
            return Status.SUCCESS
        return Status.FAILURE

    @property
    def ok(self) -> bool:
        return self.status == Status.SUCCESS

    def job(self, name: str) -> JobResult:
        return self.jobs[name]

    def legs(self) -> List[LegResult]:
        return [lr for j in self.jobs.values() for lr in j.legs]
