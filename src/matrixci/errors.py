# errors.py
from __future__ import annotations

from dataclasses import dataclass, field

from .model import StepKind


# Failure kinds, as reported per leg.
PROVISIONING = "provisioning"
GATE_VIOLATION = "gate_violation"
LOCK_INCONSISTENCY = "lock_inconsistency"
BUILD_FAILURE = "build_failure"
TEST_FAILURE = "test_failure"
STEP_FAILURE = "step_failure"
ENVIRONMENT_UNAVAILABLE = "environment_unavailable"
CANCELLED = "cancelled"

_KIND_BY_STEP = {
    StepKind.FORMAT: GATE_VIOLATION,
    StepKind.LINT: GATE_VIOLATION,
    StepKind.LOCK_CHECK: LOCK_INCONSISTENCY,
    StepKind.BUILD: BUILD_FAILURE,
    StepKind.TEST: TEST_FAILURE,
    StepKind.SHELL: STEP_FAILURE,
}


def failure_kind(step_kind: StepKind) -> str:
    return _KIND_BY_STEP.get(step_kind, STEP_FAILURE)


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the JSON check report
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ProvisioningError(CIError):
    def __init__(self, job: str, message: str, **details):
        super().__init__(kind=PROVISIONING, job=job, step=None, message=message, details=details)


class EnvironmentUnavailable(CIError):
    def __init__(self, job: str, environment: str, host: str):
        super().__init__(
            kind=ENVIRONMENT_UNAVAILABLE,
            job=job,
            step=None,
            message=f"no executor for {environment} on this host",
            details={"environment": environment, "host": host},
        )


class Cancelled(CIError):
    def __init__(self, job: str, step: str | None = None):
        super().__init__(kind=CANCELLED, job=job, step=step, message="cancelled")


@dataclass
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int
    step_kind: StepKind = StepKind.SHELL
    output: str = ""

    @property
    def kind(self) -> str:
        return failure_kind(self.step_kind)

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


class WorkflowError(ValueError):
    """Invalid pipeline definition (bad DAG, unknown needs, bad matrix)."""
