"""Pytest configuration and fixtures for releasegate tests."""
from __future__ import annotations

import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from releasegate.exec import ExecError, ExecResult
from releasegate.types import Credentials, ImageReference

Handler = Callable[[tuple[str, ...], Mapping[str, str] | None], tuple[int, str, str]]


@dataclass(eq=False)
class Call:
    argv: tuple[str, ...]
    env: Mapping[str, str] | None
    input_text: str | None
    timeout: float | None
    secrets: tuple[str, ...]


@dataclass
class _Rule:
    prefix: tuple[str, ...]
    handler: Handler | None = None
    raises: Exception | None = None
    result: tuple[int, str, str] = (0, "", "")


@dataclass
class FakeRunner:
    """Stands in for run_command; answers by argv prefix, records every call.

    Later rules win. Unmatched commands succeed with empty output.
    """

    calls: list[Call] = field(default_factory=list)
    _rules: list[_Rule] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def on(
        self,
        *prefix: str,
        stdout: str = "",
        stderr: str = "",
        code: int = 0,
        raises: Exception | None = None,
        handler: Handler | None = None,
    ) -> FakeRunner:
        self._rules.append(_Rule(prefix=prefix, handler=handler, raises=raises, result=(code, stdout, stderr)))
        return self

    def __call__(
        self,
        argv: Sequence[str],
        *,
        check: bool = True,
        timeout: float | None = None,
        input_text: str | None = None,
        env: Mapping[str, str] | None = None,
        secrets: Sequence[str] = (),
    ) -> ExecResult:
        key = tuple(argv)
        with self._lock:
            self.calls.append(Call(key, env, input_text, timeout, tuple(secrets)))
        rule = next((r for r in reversed(self._rules) if key[: len(r.prefix)] == r.prefix), None)
        code, stdout, stderr = 0, "", ""
        if rule is not None:
            if rule.raises is not None:
                raise rule.raises
            code, stdout, stderr = rule.handler(key, env) if rule.handler else rule.result
        result = ExecResult(argv=key, returncode=code, stdout=stdout, stderr=stderr)
        if check and code != 0:
            raise ExecError(result)
        return result

    def ran(self, *prefix: str) -> list[Call]:
        with self._lock:
            return [c for c in self.calls if c.argv[: len(prefix)] == prefix]


def docker_with_arches(arches: Mapping[str, str], *, image_id: str = "sha256:abc") -> FakeRunner:
    """Fake engine whose ``image inspect`` reports the arch of the last ``pull --platform``."""
    runner = FakeRunner()
    state: dict[str, str] = {}

    def pull(argv: tuple[str, ...], _env: Mapping[str, str] | None) -> tuple[int, str, str]:
        platform = next(a.split("=", 1)[1] for a in argv if a.startswith("--platform="))
        state["platform"] = platform
        return 0, f"pulled {platform}\n", ""

    def inspect(_argv: tuple[str, ...], _env: Mapping[str, str] | None) -> tuple[int, str, str]:
        platform = state["platform"]
        return 0, f"{arches[platform]}|{image_id}-{platform}\n", ""

    runner.on("docker", "pull", handler=pull)
    runner.on("docker", "image", "inspect", handler=inspect)
    runner.on("docker", "port", stdout="127.0.0.1:49153\n")
    runner.on("docker", "run", "-d", stdout="c0ffee\n")
    return runner


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def arch_runner() -> Callable[..., FakeRunner]:
    """Factory for a fake engine reporting the given arch per platform."""
    return docker_with_arches


@pytest.fixture
def image() -> ImageReference:
    return ImageReference(registry="ghcr.io", name="acme/service", tag="1.2.3")


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(registry_user="bot", registry_token="s3cr3t-token")


@pytest.fixture
def signing_credentials() -> Credentials:
    return Credentials(
        registry_user="bot",
        registry_token="s3cr3t-token",
        signing_public_key="-----BEGIN PUBLIC KEY-----\\nMFkw\\n-----END PUBLIC KEY-----",
    )


def pytest_sessionfinish(session, exitstatus):
    """Fail the run if --cov was requested but no coverage data was written.

    Catches tests that import ``src/releasegate`` by path instead of the
    installed ``releasegate`` package.
    """
    cov_enabled = any("--cov" in str(arg) for arg in session.config.args)
    if not cov_enabled:
        return

    if not list(Path.cwd().glob(".coverage*")):
        pytest.exit(
            "Coverage was enabled but no data was collected. "
            "Check that tests import from 'releasegate' (the package) not 'src/releasegate'.",
            returncode=1
        )
