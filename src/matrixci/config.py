# config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional


@dataclass(frozen=True)
class RunConfig:
    """
    Environment every job/leg starts with.

    Passed explicitly to each leg instead of being exported process-wide,
    so a leg can be rerun in isolation with the same settings.
    """
    term_color: str = "always"
    backtrace: str = "full"
    extra_env: Mapping[str, str] = field(default_factory=dict)

    def as_env(self) -> Dict[str, str]:
        env = {
            "CARGO_TERM_COLOR": self.term_color,
            "RUST_BACKTRACE": self.backtrace,
        }
        env.update({k: str(v) for k, v in self.extra_env.items()})
        return env

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "RunConfig":
        """Build from a pipeline-level env block. Known keys become fields."""
        rest = dict(env)
        color = rest.pop("CARGO_TERM_COLOR", cls.term_color)
        backtrace = rest.pop("RUST_BACKTRACE", cls.backtrace)
        return cls(term_color=str(color), backtrace=str(backtrace), extra_env=rest)


CANCEL_POLICIES = ("terminate", "drain")


@dataclass(frozen=True)
class Settings:
    cache_dir: str = ".matrixci/cache"
    workers: Optional[int] = None
    cancel_policy: str = "terminate"
    output_tail: int = 4000

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        environ = os.environ if environ is None else environ
        workers = environ.get("MATRIXCI_WORKERS")
        policy = environ.get("MATRIXCI_CANCEL_POLICY", "terminate").lower()
        if policy not in CANCEL_POLICIES:
            raise ValueError(f"MATRIXCI_CANCEL_POLICY must be one of {CANCEL_POLICIES}, got {policy!r}")
        return cls(
            cache_dir=environ.get("MATRIXCI_CACHE_DIR", ".matrixci/cache"),
            workers=int(workers) if workers else None,
            cancel_policy=policy,
            output_tail=int(environ.get("MATRIXCI_OUTPUT_TAIL", "4000")),
        )
