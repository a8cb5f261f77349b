"""Single-container smoke test, run under emulation when the host differs."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from releasegate.config import DEFAULT_REF, StandaloneSettings
from releasegate.exec import ExecError, ExecTimeout, Runner, ToolNotFound, run_command
from releasegate.polling import Clock, Deadline, PollResult, poll_until_ready
from releasegate.sources import is_relative_script, resolve_script
from releasegate.stages.emulation import Emulation, EmulationSetupError, shared_emulation
from releasegate.types import (
    FailureKind,
    ImageReference,
    PlatformTarget,
    Stage,
    Status,
    VerificationOutcome,
    failed,
    passed,
    skipped,
)

logger = logging.getLogger(__name__)

CONTAINER_PREFIX = "local-smoke"

Poller = Callable[..., PollResult]


def container_name(platform: PlatformTarget) -> str:
    return f"{CONTAINER_PREFIX}-{platform.slug}"


@dataclass(frozen=True)
class RunningContainer:
    name: str
    container_id: str
    service_url: str


class ContainerStartError(RuntimeError):
    """The container could not be started or its port could not be resolved."""


class StandaloneSmokeTester:
    """Boots the image as one container and waits for its primary endpoint."""

    def __init__(
        self,
        settings: StandaloneSettings | None = None,
        runner: Runner = run_command,
        *,
        docker: str = "docker",
        emulation: Emulation | None = None,
        poller: Poller = poll_until_ready,
        clock: Clock = time.monotonic,
        source_ref: str = DEFAULT_REF,
        scripts_root: Path | None = None,
    ):
        self.settings = settings or StandaloneSettings()
        self.scripts_root = scripts_root or Path.cwd()
        self._run = runner
        self._docker = docker
        if emulation is None:
            emulation = shared_emulation() if runner is run_command else Emulation(runner, docker=docker)
        self._emulation = emulation
        self._poll = poller
        self._clock = clock
        self._source_ref = source_ref

    @property
    def needs_checkout(self) -> bool:
        return is_relative_script(self.settings.script)

    def run(
        self,
        image: ImageReference,
        platform: PlatformTarget,
        architecture: VerificationOutcome | None,
        image_id: str | None = None,
    ) -> VerificationOutcome:
        if architecture is None:
            return skipped(Stage.STANDALONE_SMOKE, "no architecture outcome recorded; not attempted", platform)
        if architecture.status is not Status.PASS:
            return skipped(
                Stage.STANDALONE_SMOKE,
                f"architecture check {architecture.status.value}; not attempted",
                platform,
            )

        deadline = Deadline(self.settings.timeout_seconds, clock=self._clock)

        unsupported = self._check_platform(platform, deadline)
        if unsupported is not None:
            return unsupported

        name = container_name(platform)
        try:
            with self._container(image_id or str(image), platform, name, deadline) as container:
                return self._await_ready(image, platform, container, deadline)
        except ContainerStartError as exc:
            return failed(Stage.STANDALONE_SMOKE, FailureKind.SERVICE_NOT_READY, str(exc), platform)

    def _check_platform(self, platform: PlatformTarget, deadline: Deadline) -> VerificationOutcome | None:
        """Emulation setup plus a known-good reference container on the same platform."""
        try:
            self._emulation.ensure(platform)
        except EmulationSetupError as exc:
            return skipped(Stage.STANDALONE_SMOKE, str(exc), platform, kind=FailureKind.PLATFORM_UNSUPPORTED)

        reference = self.settings.reference_image
        try:
            probe = self._run(
                [self._docker, "run", "--rm", f"--platform={platform.id}", reference, "uname", "-a"],
                timeout=max(deadline.remaining(), 1.0),
            )
        except (ExecError, ExecTimeout, ToolNotFound) as exc:
            return skipped(
                Stage.STANDALONE_SMOKE,
                f"runner cannot host {platform}: reference image {reference} failed: {exc}",
                platform,
                kind=FailureKind.PLATFORM_UNSUPPORTED,
            )
        logger.debug("platform %s supported: %s", platform, probe.stdout.strip())
        return None

    @contextmanager
    def _container(
        self,
        target: str,
        platform: PlatformTarget,
        name: str,
        deadline: Deadline,
    ) -> Iterator[RunningContainer]:
        self._remove(name)
        try:
            try:
                started = self._run(
                    [
                        self._docker, "run", "-d",
                        "--name", name,
                        f"--platform={platform.id}",
                        "-p", f"127.0.0.1::{self.settings.port}",
                        target,
                    ],
                    timeout=max(deadline.remaining(), 1.0),
                )
            except (ExecError, ExecTimeout, ToolNotFound) as exc:
                raise ContainerStartError(f"container failed to start on {platform}: {exc}") from exc
            yield RunningContainer(
                name=name,
                container_id=started.stdout.strip(),
                service_url=self._service_url(name),
            )
        finally:
            self._remove(name)
            self._confirm_removed(name)

    def _service_url(self, name: str) -> str:
        try:
            mapped = self._run([self._docker, "port", name, f"{self.settings.port}/tcp"], timeout=30)
        except (ExecError, ExecTimeout, ToolNotFound) as exc:
            raise ContainerStartError(f"could not resolve published port for {name}: {exc}") from exc
        lines = [line.strip() for line in mapped.stdout.splitlines() if line.strip()]
        if not lines:
            raise ContainerStartError(f"container {name} publishes no port {self.settings.port}")
        return f"http://{lines[0]}{self.settings.path}"

    def _await_ready(
        self,
        image: ImageReference,
        platform: PlatformTarget,
        container: RunningContainer,
        deadline: Deadline,
    ) -> VerificationOutcome:
        limit = f"{self.settings.timeout_seconds:.0f}s"

        script = resolve_script(self.settings.script, self.scripts_root)
        if script is not None:
            env = {
                "CONTAINER_NAME": container.name,
                "CONTAINER_ID": container.container_id,
                "CONTAINER_ARCH": platform.id,
                "REGISTRY": image.registry,
                "IMAGE_NAME": image.name,
                "IMAGE_TAG": image.tag,
                "SERVICE_URL": container.service_url,
                "SOURCE_REF": self._source_ref,
            }
            try:
                self._run([str(script)], env=env, timeout=max(deadline.remaining(), 1.0))
            except ExecTimeout:
                return failed(Stage.STANDALONE_SMOKE, FailureKind.SERVICE_NOT_READY, f"service not ready within {limit}", platform)
            except ExecError as exc:
                return failed(Stage.STANDALONE_SMOKE, FailureKind.SERVICE_NOT_READY, f"smoke script failed: {exc.result.output}", platform)
            except ToolNotFound as exc:
                return failed(Stage.STANDALONE_SMOKE, FailureKind.TOOLING_ERROR, str(exc), platform)
            return passed(Stage.STANDALONE_SMOKE, "smoke script confirmed the service is ready", platform)

        result = self._poll(container.service_url, deadline=deadline)
        if not result.ready:
            return failed(
                Stage.STANDALONE_SMOKE,
                FailureKind.SERVICE_NOT_READY,
                f"service not ready within {limit} after {result.attempts} attempt(s): {result.last_error}",
                platform,
            )
        return passed(Stage.STANDALONE_SMOKE, f"{container.service_url} responded after {result.attempts} attempt(s)", platform)

    def _remove(self, name: str) -> None:
        try:
            self._run([self._docker, "rm", "-f", name], check=False, timeout=60)
        except (ExecTimeout, ToolNotFound) as exc:
            logger.warning("could not remove container %s: %s", name, exc)

    def _confirm_removed(self, name: str) -> bool:
        try:
            listed = self._run([self._docker, "ps", "-a", "-q", "--filter", f"name=^{name}$"], check=False, timeout=30)
        except (ExecTimeout, ToolNotFound) as exc:
            logger.warning("could not confirm removal of container %s: %s", name, exc)
            return False
        if listed.stdout.strip():
            logger.warning("container %s still present after cleanup", name)
            return False
        return True
