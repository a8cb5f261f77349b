"""Per-platform architecture conformance check."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from releasegate.exec import ExecError, ExecTimeout, Runner, ToolNotFound, run_command
from releasegate.types import (
    FailureKind,
    ImageReference,
    PlatformTarget,
    Stage,
    VerificationOutcome,
    failed,
    passed,
)

logger = logging.getLogger(__name__)

INSPECT_FORMAT = "{{.Architecture}}|{{.Id}}"


@dataclass(frozen=True)
class ArchitectureResult:
    outcome: VerificationOutcome
    image_id: str | None = None


class ArchitectureChecker:
    """Pulls one platform variant and compares its self-reported architecture.

    The local tag is shared engine state, so pull+inspect for one reference is
    serialised. Everything else about the platforms runs independently.
    """

    def __init__(
        self,
        runner: Runner = run_command,
        *,
        docker: str = "docker",
        pull_timeout: float = 600.0,
    ):
        self._run = runner
        self._docker = docker
        self._pull_timeout = pull_timeout
        self._tag_lock = threading.Lock()

    def check(self, image: ImageReference, platform: PlatformTarget) -> ArchitectureResult:
        try:
            with self._tag_lock:
                self._run([self._docker, "pull", f"--platform={platform.id}", str(image)], timeout=self._pull_timeout)
                inspected = self._run(
                    [self._docker, "image", "inspect", "--format", INSPECT_FORMAT, str(image)],
                    timeout=60,
                )
        except (ExecError, ExecTimeout) as exc:
            return ArchitectureResult(
                failed(Stage.ARCHITECTURE, FailureKind.PULL_FAILURE, f"could not pull {image} for {platform}: {exc}", platform)
            )
        except ToolNotFound as exc:
            return ArchitectureResult(failed(Stage.ARCHITECTURE, FailureKind.TOOLING_ERROR, str(exc), platform))

        actual, _, image_id = inspected.stdout.strip().partition("|")
        actual = actual.strip()
        image_id = image_id.strip() or None

        if actual != platform.expected_arch:
            logger.warning("invalid architecture for %s on %s: %s != %s", image, platform, actual, platform.expected_arch)
            return ArchitectureResult(
                failed(
                    Stage.ARCHITECTURE,
                    FailureKind.ARCHITECTURE_MISMATCH,
                    f"expected {platform.expected_arch}, got {actual or '<empty>'}",
                    platform,
                ),
                image_id=image_id,
            )

        return ArchitectureResult(
            passed(Stage.ARCHITECTURE, f"reports {actual} as expected", platform),
            image_id=image_id,
        )
