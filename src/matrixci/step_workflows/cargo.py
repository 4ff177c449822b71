# step_workflows/cargo.py
from __future__ import annotations

from typing import Iterable

from ..dsl import job, matrix, sh
from ..model import CacheSpec, Job, Step, StepKind, Toolchain

# What a cargo project needs cached between runs
CARGO_CACHE_PATHS = (
    "~/.cargo/registry/index",
    "~/.cargo/registry/cache",
    "~/.cargo/git/db",
    "target",
)

DEFAULT_OSES = ("ubuntu-latest", "windows-latest", "macos-latest")


def rust_cache(*, keep: int = 3, extra_paths: Iterable[str] = ()) -> CacheSpec:
    """Cargo registry/git checkouts and the target dir, keyed on Cargo.lock and every Cargo.toml."""
    return CacheSpec(
        paths=CARGO_CACHE_PATHS + tuple(extra_paths),
        key_files=("Cargo.lock", "**/Cargo.toml", "rust-toolchain", "rust-toolchain.toml"),
        keep=keep,
    )


def check_locked_step(name: str = "check") -> Step:
    """Compile-check against exactly the versions in Cargo.lock."""
    return sh(name, "cargo check --locked", kind=StepKind.LOCK_CHECK)


def release_build_step(name: str = "build") -> Step:
    return sh(name, "cargo build --release --verbose", kind=StepKind.BUILD)


def serial_test_step(name: str = "test", *, threads: int = 1) -> Step:
    """
    Run the test suite with the harness limited to `threads` concurrent tests.
    One thread keeps tests that share state (files, env, terminals) from racing.
    """
    return sh(name, f"cargo test -- --test-threads={threads}", kind=StepKind.TEST)


def build_and_test(
    name: str,
    toolchain: Toolchain,
    *,
    display_name: str | None = None,
    oses: Iterable[str] = DEFAULT_OSES,
    fail_fast: bool = False,
    cache: CacheSpec | None = None,
) -> Job:
    """
    Matrix job: one leg per OS, each running
    check --locked -> build --release -> test (serial), strictly in order.
    """
    return job(
        name,
        check_locked_step(),
        release_build_step(),
        serial_test_step(),
        display_name=display_name,
        runs_on="{os}",
        matrix=matrix("os", oses),
        fail_fast=fail_fast,
        toolchain=toolchain,
        cache=cache,
    )
