from .cargo import build_and_test, check_locked_step, release_build_step, rust_cache, serial_test_step
from .lint import clippy_step, fmt_check_step, lint_gate

__all__ = [
    "build_and_test",
    "check_locked_step",
    "release_build_step",
    "rust_cache",
    "serial_test_step",
    "clippy_step",
    "fmt_check_step",
    "lint_gate",
]
