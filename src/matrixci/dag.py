# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, List, Mapping, Optional, Set, Tuple

from .errors import WorkflowError
from .model import Job, Leg


def build_dag(jobs: List[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build a DAG from Job objects.

    Requires:
      - job.name: str (unique)
      - job.needs: iterable[str] (names of jobs that must run BEFORE this job)
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise WorkflowError(f"Duplicate job names found: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in name_set}
    indeg: Dict[str, int] = {n: 0 for n in name_set}

    for job in jobs:
        for dep in job.needs:
            if dep not in name_set:
                raise WorkflowError(
                    f"Job '{job.name}' needs missing job '{dep}'. "
                    f"Known jobs: {sorted(name_set)}"
                )
            # Edge dep -> job.name (dep must run before job)
            if job.name not in adj[dep]:
                adj[dep].add(job.name)
                indeg[job.name] += 1

    topo_levels(adj, indeg)  # rejects cycles
    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Each stage can run in parallel.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted(n for n, d in indeg.items() if d == 0))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        remaining = sorted(n for n, d in indeg.items() if d > 0)
        raise WorkflowError(f"DAG has a cycle. Stuck jobs: {remaining}")

    return levels


def expand_matrix(
    job: Job,
    only: Optional[Mapping[str, List[str]]] = None,
) -> List[Leg]:
    """
    Fan a job into one Leg per matrix value, in declaration order.

    `only` restricts axis values (e.g. {"os": ["ubuntu-latest"]}); keys that
    are not axes of this job are ignored.
    """
    if job.strategy is None:
        return [Leg(job=job.name, index=0, values=(), environment=_render_runs_on(job, {}))]

    axis = job.strategy.matrix
    if not axis.values:
        raise WorkflowError(f"Job '{job.name}' has an empty matrix for '{axis.key}'")

    allowed = only[axis.key] if only and axis.key in only else axis.values

    # index is the declared position, also when a filter drops values
    legs: List[Leg] = []
    for index, value in enumerate(axis.values):
        if value not in allowed:
            continue
        values = ((axis.key, value),)
        legs.append(Leg(job=job.name, index=index, values=values, environment=_render_runs_on(job, dict(values))))
    return legs


def _render_runs_on(job: Job, values: Dict[str, str]) -> str:
    try:
        return job.runs_on.format(**values)
    except KeyError as e:
        raise WorkflowError(f"Job '{job.name}' runs_on {job.runs_on!r} references unknown matrix key {e}") from e
