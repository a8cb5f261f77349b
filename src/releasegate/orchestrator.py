"""Pipeline orchestrator: signature gate, platform matrix, cluster branch.

State machine::

    idle -> signature_check -> platform_matrix -> aggregated
                            \\-> aborted

The platform matrix runs one worker per PlatformTarget (architecture check,
then that platform's standalone smoke test). The cluster smoke test runs as
one more worker alongside them. Every stage failure is captured as a
VerificationOutcome; only a failed signature check stops further work.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum

from releasegate.config import PipelineConfig
from releasegate.outcomes import OutcomeLog
from releasegate.sources import ScriptCheckout
from releasegate.stages import (
    ArchitectureChecker,
    ClusterSmokeTester,
    SignatureVerifier,
    StandaloneSmokeTester,
)
from releasegate.types import (
    Credentials,
    FailureKind,
    ImageReference,
    PlatformTarget,
    Stage,
    Status,
    VerificationOutcome,
    failed,
    skipped,
)

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    SIGNATURE_CHECK = "signature_check"
    PLATFORM_MATRIX = "platform_matrix"
    AGGREGATED = "aggregated"
    ABORTED = "aborted"


@dataclass(frozen=True)
class PipelineResult:
    """Final, ordered view of one pipeline run."""

    image: ImageReference
    state: PipelineState
    outcomes: tuple[VerificationOutcome, ...]
    advisory_stages: frozenset[Stage] = frozenset()
    scripts_commit: str | None = None

    @property
    def blocking_failures(self) -> list[VerificationOutcome]:
        return [
            o for o in self.outcomes
            if o.status is Status.FAIL and o.stage not in self.advisory_stages
        ]

    @property
    def succeeded(self) -> bool:
        return self.state is PipelineState.AGGREGATED and not self.blocking_failures

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 2

    def outcome(self, stage: Stage, platform: PlatformTarget | None = None) -> VerificationOutcome | None:
        key = (stage, platform.id if platform else None)
        return next((o for o in self.outcomes if o.key == key), None)


class Pipeline:
    """Runs every verification stage for one image, once."""

    def __init__(
        self,
        config: PipelineConfig,
        credentials: Credentials,
        *,
        signature: SignatureVerifier | None = None,
        architecture: ArchitectureChecker | None = None,
        standalone: StandaloneSmokeTester | None = None,
        cluster: ClusterSmokeTester | None = None,
        scripts: ScriptCheckout | None = None,
    ):
        self.config = config
        self.credentials = credentials
        self.signature = signature or SignatureVerifier()
        self.architecture = architecture or ArchitectureChecker()
        self.standalone = standalone or StandaloneSmokeTester(
            config.standalone, source_ref=config.ref, scripts_root=config.scripts_root
        )
        if cluster is None and config.cluster.enabled:
            cluster = ClusterSmokeTester(config.cluster, source_ref=config.ref, scripts_root=config.scripts_root)
        self.cluster = cluster
        self.scripts = scripts or ScriptCheckout()
        self.scripts_commit: str | None = None
        self.state = PipelineState.IDLE
        self._log = OutcomeLog()

    def run(self) -> PipelineResult:
        """Run every stage once.

        Raises:
            RuntimeError: If the pipeline already ran.
            ScriptCheckoutError: If smoke scripts are configured and ``ref``
                cannot be checked out from ``scripts_root``.
        """
        if self.state is not PipelineState.IDLE:
            raise RuntimeError(f"pipeline already ran (state: {self.state.value})")

        with self._scripts_at_ref():
            return self._run_stages()

    @contextmanager
    def _scripts_at_ref(self) -> Iterator[None]:
        testers = [t for t in (self.standalone, self.cluster) if t is not None]
        if not any(t.needs_checkout for t in testers):
            yield
            return

        with self.scripts.checkout(self.config.scripts_root, self.config.ref) as checkout:
            self.scripts_commit = checkout.commit
            for tester in testers:
                tester.scripts_root = checkout.path
            yield

    def _run_stages(self) -> PipelineResult:
        image = self.config.image
        logger.info("verifying %s on %s", image, ", ".join(p.id for p in self.config.platforms))

        self._enter(PipelineState.SIGNATURE_CHECK)
        signature = self._capture(Stage.SIGNATURE, None, lambda: self.signature.verify(image, self.credentials))
        self._record(signature)
        if signature.fatal:
            logger.error("signature check failed; aborting: %s", signature.detail)
            self._enter(PipelineState.ABORTED)
            return self._result()

        self._enter(PipelineState.PLATFORM_MATRIX)
        worker_count = len(self.config.platforms) + (1 if self.cluster else 0)
        with ThreadPoolExecutor(
            max_workers=self.config.max_workers or worker_count,
            thread_name_prefix="releasegate",
        ) as pool:
            futures = [pool.submit(self._platform_worker, platform) for platform in self.config.platforms]
            if self.cluster is not None:
                futures.append(pool.submit(self._cluster_worker))
            else:
                self._record(skipped(Stage.CLUSTER_SMOKE, "cluster smoke test disabled by configuration"))
            for future in as_completed(futures):
                future.result()

        self._fill_missing()
        self._enter(PipelineState.AGGREGATED)
        return self._result()

    def _platform_worker(self, platform: PlatformTarget) -> None:
        image = self.config.image
        image_id: str | None = None
        try:
            checked = self.architecture.check(image, platform)
            architecture, image_id = checked.outcome, checked.image_id
        except Exception as exc:
            architecture = self._unexpected(Stage.ARCHITECTURE, platform, exc)
        self._record(architecture)

        self._record(
            self._capture(
                Stage.STANDALONE_SMOKE,
                platform,
                lambda: self.standalone.run(image, platform, self._log.get(Stage.ARCHITECTURE, platform), image_id),
            )
        )

    def _cluster_worker(self) -> None:
        assert self.cluster is not None
        cluster = self.cluster
        self._record(
            self._capture(Stage.CLUSTER_SMOKE, None, lambda: cluster.run(self.config.image, self.credentials))
        )

    def _fill_missing(self) -> None:
        """Make sure every expected (stage, platform) pair has an outcome."""
        for platform in self.config.platforms:
            if (Stage.ARCHITECTURE, platform.id) not in self._log:
                self._record(
                    failed(Stage.ARCHITECTURE, FailureKind.TOOLING_ERROR, "no architecture outcome recorded", platform)
                )
            if (Stage.STANDALONE_SMOKE, platform.id) not in self._log:
                self._record(skipped(Stage.STANDALONE_SMOKE, "no standalone smoke outcome recorded", platform))
        if (Stage.CLUSTER_SMOKE, None) not in self._log:
            self._record(failed(Stage.CLUSTER_SMOKE, FailureKind.TOOLING_ERROR, "no cluster smoke outcome recorded"))

    def _capture(
        self,
        stage: Stage,
        platform: PlatformTarget | None,
        fn: Callable[[], VerificationOutcome],
    ) -> VerificationOutcome:
        try:
            return fn()
        except Exception as exc:
            return self._unexpected(stage, platform, exc)

    def _unexpected(self, stage: Stage, platform: PlatformTarget | None, exc: Exception) -> VerificationOutcome:
        logger.exception("%s raised for %s", stage.value, platform or "pipeline")
        return failed(stage, FailureKind.TOOLING_ERROR, f"{type(exc).__name__}: {exc}", platform)

    def _record(self, outcome: VerificationOutcome) -> None:
        self._log.append(outcome)
        where = f" [{outcome.platform}]" if outcome.platform else ""
        level = logging.WARNING if outcome.status is Status.FAIL else logging.INFO
        logger.log(level, "%s%s: %s - %s", outcome.stage.value, where, outcome.status.value, outcome.detail)

    def _enter(self, state: PipelineState) -> None:
        logger.debug("pipeline state %s -> %s", self.state.value, state.value)
        self.state = state

    def _result(self) -> PipelineResult:
        return PipelineResult(
            image=self.config.image,
            state=self.state,
            outcomes=tuple(self._log.ordered(self.config.platforms)),
            advisory_stages=self.config.advisory_stages,
            scripts_commit=self.scripts_commit,
        )
