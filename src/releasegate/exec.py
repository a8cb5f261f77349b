"""Command runners for the docker/cosign/kind/helm/kubectl collaborators."""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

MASK = "***"


@dataclass(frozen=True)
class ExecResult:
    """Result envelope for subprocess execution. ``argv`` is already masked."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return (self.stderr or self.stdout).strip()


class ExecError(RuntimeError):
    """Raised when a command returns non-zero in check mode."""

    def __init__(self, result: ExecResult):
        rendered = " ".join(result.argv)
        super().__init__(f"command failed ({result.returncode}): {rendered}\n{result.output}")
        self.result = result


class ExecTimeout(RuntimeError):
    """Raised when a command outlives its deadline."""

    def __init__(self, argv: tuple[str, ...], timeout: float):
        super().__init__(f"command timed out after {timeout:.0f}s: {' '.join(argv)}")
        self.argv = argv
        self.timeout = timeout


class ToolNotFound(RuntimeError):
    """Raised when the executable is not installed."""

    def __init__(self, tool: str):
        super().__init__(f"required tool not found on PATH: {tool}")
        self.tool = tool


class Runner(Protocol):
    def __call__(
        self,
        argv: Sequence[str],
        *,
        check: bool = ...,
        timeout: float | None = ...,
        input_text: str | None = ...,
        env: Mapping[str, str] | None = ...,
        secrets: Sequence[str] = ...,
    ) -> ExecResult: ...


def mask(text: str, secrets: Sequence[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, MASK)
    return text


def run_command(
    argv: Sequence[str],
    *,
    check: bool = True,
    timeout: float | None = None,
    input_text: str | None = None,
    env: Mapping[str, str] | None = None,
    secrets: Sequence[str] = (),
    cwd: Path | None = None,
) -> ExecResult:
    """Run command and return structured result.

    ``env`` is layered over the current process environment. Every string in
    ``secrets`` is masked in the recorded argv and captured output.
    """
    masked_argv = tuple(mask(a, secrets) for a in argv)
    logger.debug("exec: %s", " ".join(masked_argv))
    merged_env = {**os.environ, **env} if env else None
    try:
        completed = subprocess.run(
            list(argv),
            cwd=cwd,
            input=input_text,
            env=merged_env,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as exc:
        raise ToolNotFound(argv[0]) from exc
    except subprocess.TimeoutExpired as exc:
        raise ExecTimeout(masked_argv, timeout or 0.0) from exc

    result = ExecResult(
        argv=masked_argv,
        returncode=completed.returncode,
        stdout=mask(completed.stdout or "", secrets),
        stderr=mask(completed.stderr or "", secrets),
    )
    if check and not result.ok:
        raise ExecError(result)
    return result
