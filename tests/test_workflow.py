# tests/test_workflow.py
"""The manga tui pipeline as checked in at the repository root."""
from __future__ import annotations

from matrixci.model import StepKind

from .conftest import OSES


def test_two_independent_jobs(manga_pipeline):
    assert manga_pipeline.name == "main"
    assert [j.name for j in manga_pipeline.jobs] == ["check_code_format_and_lint", "build_and_test"]
    assert all(not j.needs for j in manga_pipeline.jobs)
    assert manga_pipeline.env == {"CARGO_TERM_COLOR": "always", "RUST_BACKTRACE": "full"}


def test_triggers_on_main_only(manga_pipeline):
    assert [(t.event_type, t.branches) for t in manga_pipeline.triggers] == [
        ("push", ("main",)),
        ("pull_request", ("main",)),
    ]


def test_gate_is_fmt_then_clippy_on_one_environment(manga_pipeline):
    gate = manga_pipeline.job("check_code_format_and_lint")
    assert gate.title == "Check code formatting and linting"
    assert gate.strategy is None
    assert gate.runs_on == "ubuntu-latest"
    assert [(s.kind, s.run) for s in gate.steps] == [
        (StepKind.FORMAT, "cargo fmt --check"),
        (StepKind.LINT, "cargo clippy -- -D warnings"),
    ]


def test_matrix_job_shape(manga_pipeline):
    bt = manga_pipeline.job("build_and_test")
    assert bt.title == "Build and test manga tui"
    assert bt.runs_on == "{os}"
    assert bt.strategy.matrix.key == "os"
    assert bt.strategy.matrix.values == OSES
    assert bt.strategy.fail_fast is False
    assert [s.run for s in bt.steps] == [
        "cargo check --locked",
        "cargo build --release --verbose",
        "cargo test -- --test-threads=1",
    ]


def test_both_jobs_use_the_same_pinned_toolchain_and_cache(manga_pipeline):
    gate, bt = manga_pipeline.jobs
    assert gate.toolchain == bt.toolchain
    assert gate.toolchain.version == "nightly-2024-06-25"
    assert set(gate.toolchain.components) == {"rustfmt", "clippy"}
    assert "Cargo.lock" in bt.cache.key_files
    assert "target" in bt.cache.paths
