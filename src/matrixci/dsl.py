# src/matrixci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .model import CacheSpec, Job, Matrix, Pipeline, Step, StepKind, Strategy, Toolchain, Trigger


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    kind: StepKind = StepKind.SHELL,
    env: Optional[Dict[str, str]] = None,
) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, kind=kind, env={k: str(v) for k, v in (env or {}).items()})


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    display_name: Optional[str] = None,
    needs: Optional[List[str]] = None,
    runs_on: str = "ubuntu-latest",
    matrix: Optional[Matrix] = None,
    fail_fast: bool = False,
    toolchain: Optional[Toolchain] = None,
    cache: Optional[CacheSpec] = None,
    env: Optional[Dict[str, str]] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final = list(steps)
    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        runs_on=runs_on,
        display_name=display_name,
        strategy=Strategy(matrix=matrix, fail_fast=fail_fast) if matrix is not None else None,
        toolchain=toolchain,
        cache=cache,
        env={k: str(v) for k, v in (env or {}).items()},
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._display_name: Optional[str] = None
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._runs_on = "ubuntu-latest"
        self._matrix: Optional[Matrix] = None
        self._fail_fast = False
        self._toolchain: Optional[Toolchain] = None
        self._cache: Optional[CacheSpec] = None

    def named(self, display_name: str):
        self._display_name = display_name
        return self

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def runs_on(self, label: str):
        self._runs_on = label
        return self

    def over(self, m: Matrix, *, fail_fast: bool = False):
        self._matrix = m
        self._fail_fast = fail_fast
        return self

    def with_toolchain(self, name: str, version: str, *components: str):
        self._toolchain = Toolchain(name=name, version=version, components=tuple(components))
        return self

    def with_cache(self, spec: CacheSpec):
        self._cache = spec
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, kind: StepKind = StepKind.SHELL):
        self._steps.append(Step(name=name, run=run, cwd=cwd, kind=kind))
        return self

    def add(self, *steps: Step):
        self._steps.extend(steps)
        return self

    def with_env(self, **env):
        # force values to str for stable hashing + env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def build(self) -> Job:
        return job(
            self.name,
            *self._steps,
            display_name=self._display_name,
            needs=self._needs,
            runs_on=self._runs_on,
            matrix=self._matrix,
            fail_fast=self._fail_fast,
            toolchain=self._toolchain,
            cache=self._cache,
            env=self._env,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Matrix / triggers / pipeline
# ---------------------------------------------------------------------

def matrix(key: str, values: Iterable[str]) -> Matrix:
    """
    Example:
        job("test", ..., runs_on="{os}",
            matrix=matrix("os", ["ubuntu-latest", "windows-latest"]))
    """
    vals = tuple(str(v) for v in values)
    if len(set(vals)) != len(vals):
        raise ValueError(f"matrix({key!r}) has duplicate values: {vals}")
    return Matrix(key=key, values=vals)


def on_push(*branches: str) -> Trigger:
    return Trigger(event_type="push", branches=tuple(branches))


def on_pull_request(*branches: str) -> Trigger:
    return Trigger(event_type="pull_request", branches=tuple(branches))


def pipeline(
    name: str,
    *jobs: Job,
    on: Iterable[Trigger] = (),
    env: Optional[Dict[str, str]] = None,
) -> Pipeline:
    """
    Users can write:
        from matrixci import pipeline, job, sh, on_push

        def workflow():          # or PIPELINE = pipeline(...)
            return pipeline("ci", job(...), on=[on_push("main")])
    """
    return Pipeline(
        name=name,
        jobs=list(jobs),
        triggers=list(on),
        env={k: str(v) for k, v in (env or {}).items()},
    )
