"""Process-wide instruction-set emulation setup (binfmt/QEMU)."""

from __future__ import annotations

import logging
import platform as host_platform
import threading
from collections.abc import Callable

from releasegate.exec import ExecError, ExecTimeout, Runner, ToolNotFound, run_command
from releasegate.types import PlatformTarget

logger = logging.getLogger(__name__)

BINFMT_IMAGE = "tonistiigi/binfmt"

MACHINE_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "armv6l": "arm",
    "i386": "386",
    "i686": "386",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "riscv64": "riscv64",
}


def native_arch(machine: str | None = None) -> str:
    """Host architecture in container-platform terms (``x86_64`` -> ``amd64``)."""
    raw = (machine if machine is not None else host_platform.machine()).lower()
    return MACHINE_ALIASES.get(raw, raw)


def emulation_mode(target: PlatformTarget) -> str:
    """Name of the binfmt install needed for ``target``.

    arm64 only runs reliably with every handler registered; the rest get the
    handler for their own architecture.
    """
    if target.expected_arch == "arm64":
        return "all"
    return target.expected_arch


class EmulationSetupError(RuntimeError):
    """The host cannot be configured to run the target instruction set."""


class Emulation:
    """Installs binfmt handlers at most once per mode for this process."""

    def __init__(
        self,
        runner: Runner = run_command,
        *,
        docker: str = "docker",
        native: Callable[[], str] = native_arch,
        timeout: float = 300.0,
    ):
        self._run = runner
        self._docker = docker
        self._native = native
        self._timeout = timeout
        self._lock = threading.Lock()
        self._installed: set[str] = set()
        self._failed: dict[str, str] = {}

    def needed(self, target: PlatformTarget) -> bool:
        return target.expected_arch != self._native()

    def ensure(self, target: PlatformTarget) -> None:
        """Make ``target`` runnable on this host.

        Raises:
            EmulationSetupError: If the binfmt install fails (also on every
                later call for the same mode).
        """
        if not self.needed(target):
            return

        mode = emulation_mode(target)
        with self._lock:
            if mode in self._installed or "all" in self._installed:
                return
            if mode in self._failed:
                raise EmulationSetupError(self._failed[mode])

            logger.info("installing binfmt emulation (%s) for %s", mode, target)
            try:
                self._run(
                    [self._docker, "run", "--privileged", "--rm", BINFMT_IMAGE, "--install", mode],
                    timeout=self._timeout,
                )
            except (ExecError, ExecTimeout, ToolNotFound) as exc:
                message = f"emulation setup ({mode}) failed for {target}: {exc}"
                self._failed[mode] = message
                raise EmulationSetupError(message) from exc
            self._installed.add(mode)


_shared: Emulation | None = None
_shared_lock = threading.Lock()


def shared_emulation() -> Emulation:
    """The process-wide Emulation used by default collaborators."""
    global _shared
    with _shared_lock:
        if _shared is None:
            _shared = Emulation()
        return _shared
