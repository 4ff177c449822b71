# runner.py
from __future__ import annotations

import runpy
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .cache import CacheHit, CacheStore
from .config import RunConfig
from .dag import build_dag, expand_matrix
from .errors import CIError, Cancelled, StepFailure
from .executor import ExecutorFactory, host_executor_factory
from .model import (
    Job,
    JobResult,
    Leg,
    LegResult,
    Pipeline,
    PipelineResult,
    Status,
    StepResult,
    TriggerEvent,
)
from .toolchain import Provisioner, get_provisioner
from .triggers import is_triggered
from .ui.console import Console, get_console


class CancelPolicy(str, Enum):
    """What cancel() does to legs that are already running."""
    TERMINATE = "terminate"  # kill the running command, leg ends cancelled
    DRAIN = "drain"          # let running legs finish; nothing new starts


# ----------------------------------------------------------------------
# Workflow loading (local file/module)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a python file path.

    The file must define either:
      - workflow() -> Pipeline
      - PIPELINE = Pipeline(...)
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"matrixci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    found = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        found = globals_dict["workflow"]()
    elif "PIPELINE" in globals_dict:
        found = globals_dict["PIPELINE"]

    if not isinstance(found, Pipeline):
        raise TypeError(
            "Workflow must return/define a Pipeline. "
            "Define workflow() -> Pipeline or PIPELINE = Pipeline(...)."
        )
    return found


# ----------------------------------------------------------------------
# Leg execution
# ----------------------------------------------------------------------

def run_leg(
    job: Job,
    leg: Leg,
    *,
    executor_factory: ExecutorFactory = host_executor_factory,
    run_config: Optional[RunConfig] = None,
    repo_root: str | Path = ".",
    cache: Optional[CacheStore] = None,
    provisioners: Optional[Mapping[str, Provisioner]] = None,
    cancel: Optional[threading.Event] = None,
    console: Optional[Console] = None,
    output_tail: int = 4000,
) -> LegResult:
    """
    Run one leg: restore cache, provision toolchain, run steps in order,
    save cache. Never raises for CI failures; they end up in the result.
    """
    console = console or get_console()
    run_config = run_config or RunConfig()
    cancel = cancel or threading.Event()
    root = Path(repo_root).resolve()
    started = time.monotonic()

    result = LegResult(leg=leg, status=Status.SUCCESS)
    base_env: Dict[str, str] = {**run_config.as_env(), **job.env}
    hit: Optional[CacheHit] = None

    console.print_leg_start(leg.id, leg.environment)
    try:
        if cancel.is_set():
            raise Cancelled(job.name)

        executor = executor_factory(leg)

        if cache is not None and job.cache is not None:
            try:
                hit = cache.restore(job, leg, repo_root=root, run_env=run_config.as_env())
            except Exception as e:
                # a broken cache is a miss, never a failed leg
                hit = CacheHit(hit=False, key="", reason=f"restore failed: {e}")
            result.cache = hit.state
            console.print_cache(leg.id, hit.state, hit.reason)

        if job.toolchain is not None:
            try:
                provisioner = get_provisioner(job.toolchain, provisioners)
                activated = provisioner.provision(
                    job.toolchain, executor, job=job.name, cwd=root, env=base_env, cancel=cancel
                )
            except CIError as e:
                e.job = e.job or job.name
                raise
            base_env.update(activated)
            console.print_provisioned(leg.id, job.toolchain.identifier)

        for step in job.steps:
            if cancel.is_set():
                raise Cancelled(job.name, step.name)

            console.print_step(leg.id, step.name)
            step_started = time.monotonic()
            res = executor.run(
                step.run,
                cwd=(root / (step.cwd or ".")).resolve(),
                env={**base_env, **step.env},
                cancel=cancel,
            )
            tail = res.output[-output_tail:] if output_tail else ""
            sr = StepResult(
                name=step.name,
                kind=step.kind,
                status=Status.SUCCESS,
                exit_code=res.exit_code,
                duration=time.monotonic() - step_started,
                output=tail,
            )
            result.steps.append(sr)

            if res.cancelled:
                sr.status = Status.CANCELLED
                raise Cancelled(job.name, step.name)
            if res.exit_code != 0:
                sr.status = Status.FAILURE
                console.print_step_output(leg.id, tail)
                raise StepFailure(
                    job=job.name,
                    step=step.name,
                    cmd=step.run,
                    exit_code=res.exit_code,
                    step_kind=step.kind,
                    output=tail,
                )
            if console.debug:
                console.print_step_output(leg.id, tail)

    except Cancelled as e:
        result.status = Status.CANCELLED
        result.error_kind = e.kind
        result.error = str(e)
    except StepFailure as e:
        result.status = Status.FAILURE
        result.error_kind = e.kind
        result.error = str(e)
    except CIError as e:
        if cancel.is_set():
            # provisioning interrupted by cancel()
            result.status, result.error_kind, result.error = Status.CANCELLED, "cancelled", str(e)
        else:
            result.status = Status.FAILURE
            result.error_kind = e.kind
            result.error = str(e)
    except FileNotFoundError as e:
        # missing step cwd
        result.status = Status.FAILURE
        result.error_kind = "step_failure"
        result.error = str(e)
    else:
        if cache is not None and job.cache is not None and not (hit and hit.hit and not hit.partial):
            _save_cache(cache, job, leg, root, run_config, console)

    done = {s.name for s in result.steps}
    for step in job.steps:
        if step.name not in done:
            result.steps.append(StepResult(name=step.name, kind=step.kind, status=Status.SKIPPED))

    result.duration = time.monotonic() - started
    console.print_leg_done(result)
    return result


def _save_cache(cache: CacheStore, job: Job, leg: Leg, root: Path, run_config: RunConfig, console: Console) -> None:
    # a failed save only costs the next run some time
    try:
        key, _manifest = cache.save(job, leg, repo_root=root, run_env=run_config.as_env())
        cache.prune(job.name, leg.environment, keep=job.cache.keep)
        console.print_cache_saved(leg.id, key)
    except OSError as e:
        console.print_cache(leg.id, "not saved", str(e))


# ----------------------------------------------------------------------
# Orchestration
# ----------------------------------------------------------------------

class PipelineRun:
    """
    One invocation of a pipeline for one trigger event.

    Jobs without unmet needs start together; every leg runs on its own
    worker. A job unlocks its dependents only when all its legs succeeded.
    A failing leg cancels its siblings only if its job's strategy says
    fail_fast; other jobs are never affected.
    """

    def __init__(
        self,
        pipeline: Pipeline,
        event: TriggerEvent,
        *,
        repo_root: str | Path = ".",
        cache_root: str | Path | None = ".matrixci/cache",
        max_workers: int | None = None,
        executor_factory: ExecutorFactory = host_executor_factory,
        provisioners: Optional[Mapping[str, Provisioner]] = None,
        run_config: Optional[RunConfig] = None,
        cancel_policy: CancelPolicy | str = CancelPolicy.TERMINATE,
        matrix_filter: Optional[Mapping[str, List[str]]] = None,
        console: Optional[Console] = None,
        output_tail: int = 4000,
    ):
        self.pipeline = pipeline
        self.event = event
        self.repo_root = Path(repo_root).resolve()
        self.cache = CacheStore(cache_root) if cache_root is not None else None
        self.max_workers = max_workers
        self.executor_factory = executor_factory
        self.provisioners = provisioners
        self.run_config = run_config or RunConfig.from_env(pipeline.env)
        self.cancel_policy = CancelPolicy(cancel_policy)
        self.matrix_filter = matrix_filter
        self.console = console or get_console()
        self.output_tail = output_tail

        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._leg_events: Dict[str, threading.Event] = {}
        self._job_legs: Dict[str, List[str]] = {}

    # -- cancellation ---------------------------------------------------

    def cancel(self) -> None:
        """Cancel the run (e.g. superseded by a newer push)."""
        self._cancelled.set()
        if self.cancel_policy == CancelPolicy.TERMINATE:
            with self._lock:
                for ev in self._leg_events.values():
                    ev.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _cancel_siblings(self, job: str, failed: Leg) -> None:
        with self._lock:
            for leg_id in self._job_legs.get(job, []):
                if leg_id != failed.id:
                    self._leg_events[leg_id].set()

    def _run_one(self, job: Job, leg: Leg) -> LegResult:
        with self._lock:
            ev = self._leg_events[leg.id]
            not_started = self._cancelled.is_set() or ev.is_set()
        if not_started:
            return LegResult(leg=leg, status=Status.CANCELLED, error_kind="cancelled", error="cancelled before start",
                             steps=[StepResult(s.name, s.kind, Status.SKIPPED) for s in job.steps])
        return run_leg(
            job,
            leg,
            executor_factory=self.executor_factory,
            run_config=self.run_config,
            repo_root=self.repo_root,
            cache=self.cache,
            provisioners=self.provisioners,
            cancel=ev,
            console=self.console,
            output_tail=self.output_tail,
        )

    # -- main loop --------------------------------------------------------

    def run(self) -> PipelineResult:
        pipeline = self.pipeline
        result = PipelineResult(pipeline=pipeline.name, event=self.event, triggered=is_triggered(pipeline, self.event))
        if not result.triggered:
            self.console.print_not_triggered(pipeline.name, self.event)
            return result

        adj, indeg = build_dag(pipeline.jobs)
        by_name = {j.name: j for j in pipeline.jobs}
        legs_by_job = {j.name: expand_matrix(j, self.matrix_filter) for j in pipeline.jobs}
        total_legs = sum(len(v) for v in legs_by_job.values())

        self.console.print_run_started(pipeline.name, self.event, len(pipeline.jobs), total_legs)

        max_workers = self.max_workers or max(1, total_legs)
        job_results: Dict[str, JobResult] = {}
        remaining: Dict[str, int] = {}
        ready: List[str] = [j.name for j in pipeline.jobs if indeg[j.name] == 0]
        in_flight: Dict[Future, Leg] = {}

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            while ready or in_flight:
                # schedule every leg of every ready job
                while ready and not self._cancelled.is_set():
                    name = ready.pop(0)
                    job = by_name[name]
                    jr = job_results[name] = JobResult(job=name)
                    legs = legs_by_job[name]
                    if not legs:
                        jr.status = Status.SKIPPED
                        jr.reason = "no legs selected"
                        self.console.print_job_skipped(name, jr.reason)
                        continue
                    remaining[name] = len(legs)
                    with self._lock:
                        self._job_legs[name] = [leg.id for leg in legs]
                        for leg in legs:
                            self._leg_events[leg.id] = threading.Event()
                            if self._cancelled.is_set() and self.cancel_policy == CancelPolicy.TERMINATE:
                                self._leg_events[leg.id].set()
                    for leg in legs:
                        in_flight[pool.submit(self._run_one, job, leg)] = leg

                if not in_flight:
                    break

                # wait for one completion, then loop to schedule newly-ready jobs
                fut = next(as_completed(list(in_flight.keys())))
                leg = in_flight.pop(fut)
                job = by_name[leg.job]
                try:
                    lr = fut.result()
                except Exception as e:
                    lr = LegResult(leg=leg, status=Status.FAILURE, error_kind="error", error=str(e))
                    self.console.print_exception(e)
                job_results[leg.job].legs.append(lr)

                if lr.status == Status.FAILURE and job.strategy is not None and job.strategy.fail_fast:
                    self._cancel_siblings(job.name, leg)

                remaining[leg.job] -= 1
                if remaining[leg.job] == 0:
                    jr = job_results[leg.job]
                    jr.legs.sort(key=lambda r: r.leg.index)
                    jr.status = _job_status(jr.legs)
                    if jr.status == Status.SUCCESS:
                        for nxt in sorted(adj[leg.job]):
                            indeg[nxt] -= 1
                            if indeg[nxt] == 0:
                                ready.append(nxt)

        for name in by_name:
            if name not in job_results:
                jr = JobResult(job=name)
                if self._cancelled.is_set():
                    jr.status, jr.reason = Status.CANCELLED, "pipeline cancelled"
                else:
                    jr.status, jr.reason = Status.SKIPPED, "a needed job did not succeed"
                self.console.print_job_skipped(name, jr.reason)
                job_results[name] = jr

        result.jobs = {name: job_results[name] for name in by_name}
        result.cancelled = self._cancelled.is_set()
        return result


def _job_status(legs: List[LegResult]) -> Status:
    if all(lr.ok for lr in legs):
        return Status.SUCCESS
    if any(lr.status == Status.FAILURE for lr in legs):
        return Status.FAILURE
    return Status.CANCELLED


def run_pipeline(pipeline: Pipeline, event: TriggerEvent, **kwargs) -> PipelineResult:
    """Run every job/leg the event triggers and aggregate their statuses."""
    return PipelineRun(pipeline, event, **kwargs).run()
