# tests/test_dag.py
from __future__ import annotations

import pytest

from matrixci.dag import build_dag, expand_matrix, topo_levels
from matrixci.dsl import build, job, matrix, sh
from matrixci.errors import WorkflowError


def _j(name, needs=None):
    return job(name, sh("s", "true"), needs=needs)


def test_levels_follow_needs():
    jobs = [_j("lint"), _j("test"), _j("package", needs=["lint", "test"]), _j("publish", needs=["package"])]
    adj, indeg = build_dag(jobs)
    assert topo_levels(adj, indeg) == [["lint", "test"], ["package"], ["publish"]]


def test_duplicate_names_rejected():
    with pytest.raises(WorkflowError, match="Duplicate"):
        build_dag([_j("a"), _j("a")])


def test_missing_need_rejected():
    with pytest.raises(WorkflowError, match="missing job 'nope'"):
        build_dag([_j("a", needs=["nope"])])


def test_cycle_rejected():
    with pytest.raises(WorkflowError, match="cycle"):
        build_dag([_j("a", needs=["b"]), _j("b", needs=["a"])])


def test_manga_jobs_are_independent(manga_pipeline):
    adj, indeg = build_dag(manga_pipeline.jobs)
    assert topo_levels(adj, indeg) == [["build_and_test", "check_code_format_and_lint"]]


def test_plain_job_is_one_leg():
    [leg] = expand_matrix(_j("gate"))
    assert leg.id == "gate"
    assert leg.environment == "ubuntu-latest"
    assert leg.matrix == {}


def test_matrix_expands_in_declared_order():
    j = job("bt", sh("s", "true"), runs_on="{os}", matrix=matrix("os", ["ubuntu-latest", "windows-latest", "macos-latest"]))
    legs = expand_matrix(j)

    assert [leg.environment for leg in legs] == ["ubuntu-latest", "windows-latest", "macos-latest"]
    assert [leg.index for leg in legs] == [0, 1, 2]
    assert legs[1].id == "bt (windows-latest)"
    assert legs[1].matrix == {"os": "windows-latest"}


def test_matrix_filter_keeps_declared_order():
    j = job("bt", sh("s", "true"), runs_on="{os}", matrix=matrix("os", ["ubuntu-latest", "windows-latest", "macos-latest"]))
    legs = expand_matrix(j, {"os": ["macos-latest", "ubuntu-latest"], "rust": ["1.79.0"]})
    assert [leg.environment for leg in legs] == ["ubuntu-latest", "macos-latest"]


def test_matrix_filter_keeps_declared_index():
    j = job("bt", sh("s", "true"), runs_on="{os}", matrix=matrix("os", ["ubuntu-latest", "windows-latest", "macos-latest"]))
    [leg] = expand_matrix(j, {"os": ["macos-latest"]})
    assert leg.environment == "macos-latest"
    assert leg.index == 2


def test_runs_on_with_unknown_key_rejected():
    j = job("bt", sh("s", "true"), runs_on="{target}", matrix=matrix("os", ["ubuntu-latest"]))
    with pytest.raises(WorkflowError, match="unknown matrix key"):
        expand_matrix(j)


def test_empty_matrix_rejected():
    j = build("bt").define_step("s", "true").runs_on("{os}").over(matrix("os", [])).build()
    with pytest.raises(WorkflowError, match="empty matrix"):
        expand_matrix(j)


def test_duplicate_matrix_values_rejected():
    with pytest.raises(ValueError, match="duplicate"):
        matrix("os", ["ubuntu-latest", "ubuntu-latest"])
