# step_workflows/lint.py
from __future__ import annotations

from typing import List, Optional

from ..dsl import job, sh
from ..model import CacheSpec, Job, Step, StepKind, Toolchain


# ---------------------------------------------------------------------
# Format / lint step helpers
# ---------------------------------------------------------------------

def fmt_check_step(name: str = "check-fmt", *, cwd: str | None = None) -> Step:
    """Fail if any file differs from rustfmt's output. Check-only, never rewrites."""
    return sh(name, "cargo fmt --check", cwd=cwd, kind=StepKind.FORMAT)


def clippy_step(
    name: str = "clippy",
    *,
    cwd: str | None = None,
    extra_args: Optional[List[str]] = None,
) -> Step:
    """Run clippy with every warning promoted to an error."""
    cmd = "cargo clippy"
    if extra_args:
        cmd += " " + " ".join(extra_args)
    return sh(name, f"{cmd} -- -D warnings", cwd=cwd, kind=StepKind.LINT)


# ---------------------------------------------------------------------
# Gate job
# ---------------------------------------------------------------------

def lint_gate(
    name: str,
    toolchain: Toolchain,
    *,
    display_name: str | None = None,
    runs_on: str = "ubuntu-latest",
    cache: CacheSpec | None = None,
) -> Job:
    """
    Single-environment quality gate: format check, then clippy.
    Builds nothing; fails on the first diagnostic.
    """
    return job(
        name,
        fmt_check_step(),
        clippy_step(),
        display_name=display_name,
        runs_on=runs_on,
        toolchain=toolchain,
        cache=cache,
    )
