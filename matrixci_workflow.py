# matrixci_workflow.py
# CI for manga tui: a fmt/clippy gate plus build-and-test on three OSes.
from __future__ import annotations

from matrixci.dsl import on_pull_request, on_push, pipeline
from matrixci.model import Toolchain
from matrixci.step_workflows import build_and_test, lint_gate, rust_cache

RUST = Toolchain("rust", "nightly-2024-06-25", components=("rustfmt", "clippy"))


def workflow():
    return pipeline(
        "main",
        lint_gate(
            "check_code_format_and_lint",
            RUST,
            display_name="Check code formatting and linting",
            cache=rust_cache(),
        ),
        build_and_test(
            "build_and_test",
            RUST,
            display_name="Build and test manga tui",
            fail_fast=False,
            cache=rust_cache(),
        ),
        on=[on_push("main"), on_pull_request("main")],
        env={
            "CARGO_TERM_COLOR": "always",
            "RUST_BACKTRACE": "full",
        },
    )
