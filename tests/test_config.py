# tests/test_config.py
from __future__ import annotations

import os

import pytest

from matrixci.config import RunConfig, Settings


def test_run_config_defaults():
    assert RunConfig().as_env() == {"CARGO_TERM_COLOR": "always", "RUST_BACKTRACE": "full"}


def test_run_config_from_pipeline_env():
    cfg = RunConfig.from_env({"RUST_BACKTRACE": "1", "RUSTFLAGS": "-D warnings"})
    assert cfg.backtrace == "1"
    assert cfg.term_color == "always"
    assert cfg.as_env() == {
        "CARGO_TERM_COLOR": "always",
        "RUST_BACKTRACE": "1",
        "RUSTFLAGS": "-D warnings",
    }


def test_run_config_does_not_touch_process_env(monkeypatch):
    monkeypatch.delenv("RUST_BACKTRACE", raising=False)
    RunConfig().as_env()
    assert "RUST_BACKTRACE" not in os.environ


def test_settings_defaults():
    s = Settings.from_environ({})
    assert s == Settings()
    assert s.cancel_policy == "terminate"


def test_settings_from_environ():
    s = Settings.from_environ({
        "MATRIXCI_CACHE_DIR": "/var/cache/ci",
        "MATRIXCI_WORKERS": "2",
        "MATRIXCI_CANCEL_POLICY": "DRAIN",
        "MATRIXCI_OUTPUT_TAIL": "0",
    })
    assert s.cache_dir == "/var/cache/ci"
    assert s.workers == 2
    assert s.cancel_policy == "drain"
    assert s.output_tail == 0


def test_settings_rejects_unknown_cancel_policy():
    with pytest.raises(ValueError, match="MATRIXCI_CANCEL_POLICY"):
        Settings.from_environ({"MATRIXCI_CANCEL_POLICY": "ignore"})
