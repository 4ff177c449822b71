# toolchain.py
from __future__ import annotations

import re
import threading
from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol

from .errors import ProvisioningError
from .executor import Executor
from .model import Toolchain

FLOATING = {"stable", "beta", "nightly", "latest"}

# nightly-2024-06-25, stable-2024-06-13, 1.79.0, 1.79.0-x86_64-unknown-linux-gnu
_PINNED = re.compile(
    r"^(?:(?:nightly|beta|stable)-\d{4}-\d{2}-\d{2}|\d+\.\d+\.\d+)(?:-[A-Za-z0-9_]+(?:-[A-Za-z0-9_]+)*)?$"
)


def is_pinned(version: str) -> bool:
    v = version.strip()
    if v.lower() in FLOATING:
        return False
    return bool(_PINNED.match(v))


class Provisioner(Protocol):
    def provision(
        self,
        toolchain: Toolchain,
        executor: Executor,
        *,
        job: str,
        cwd: Path,
        env: Mapping[str, str],
        cancel: Optional[threading.Event] = None,
    ) -> Dict[str, str]:
        """Install/activate the toolchain. Returns env vars later steps need."""
        ...


class RustupProvisioner:
    """
    Installs a pinned rust toolchain with rustup and activates it through
    RUSTUP_TOOLCHAIN for the rest of the leg. The host's default toolchain
    is never changed.
    """

    def __init__(self, profile: str = "minimal"):
        self.profile = profile

    def install_command(self, toolchain: Toolchain) -> str:
        parts = ["rustup", "toolchain", "install", toolchain.version, "--profile", self.profile]
        for c in toolchain.components:
            parts += ["--component", c]
        return " ".join(parts)

    def provision(self, toolchain, executor, *, job, cwd, env, cancel=None) -> Dict[str, str]:
        if not is_pinned(toolchain.version):
            raise ProvisioningError(
                job,
                f"toolchain version {toolchain.version!r} is not pinned",
                hint="use a dated channel such as nightly-2024-06-25 or a full version such as 1.79.0",
            )

        res = executor.run(self.install_command(toolchain), cwd=cwd, env=env, cancel=cancel)
        if res.exit_code != 0:
            raise ProvisioningError(
                job,
                f"could not install {toolchain.identifier}",
                exit_code=res.exit_code,
                output=res.output[-2000:],
            )

        activated = {"RUSTUP_TOOLCHAIN": toolchain.version}
        probe = executor.run("rustc --version", cwd=cwd, env={**env, **activated}, cancel=cancel)
        if probe.exit_code != 0:
            raise ProvisioningError(
                job,
                f"{toolchain.identifier} installed but rustc is not runnable",
                exit_code=probe.exit_code,
                output=probe.output[-2000:],
            )
        return activated


PROVISIONERS: Dict[str, Provisioner] = {
    "rust": RustupProvisioner(),
}


def get_provisioner(toolchain: Toolchain, registry: Mapping[str, Provisioner] | None = None) -> Provisioner:
    registry = PROVISIONERS if registry is None else registry
    try:
        return registry[toolchain.name]
    except KeyError:
        raise ProvisioningError(
            "",
            f"no provisioner for toolchain {toolchain.name!r}",
            known=sorted(registry),
        ) from None
