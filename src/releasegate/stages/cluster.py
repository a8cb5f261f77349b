"""Ephemeral kind cluster smoke test for the Helm packaging path."""

from __future__ import annotations

import base64
import json
import logging
import os
import tempfile
import time
from pathlib import Path

from releasegate.config import DEFAULT_REF, ClusterSettings
from releasegate.exec import ExecError, ExecTimeout, Runner, ToolNotFound, run_command
from releasegate.polling import Clock, Deadline
from releasegate.sources import is_relative_script, resolve_script
from releasegate.types import (
    Credentials,
    FailureKind,
    ImageReference,
    Stage,
    VerificationOutcome,
    failed,
    passed,
)

logger = logging.getLogger(__name__)

PULL_SECRET_NAME = "releasegate-pull"


class ProvisioningError(RuntimeError):
    """The ephemeral cluster or its namespace could not be prepared."""


def docker_config_json(image: ImageReference, credentials: Credentials) -> str:
    auth = base64.b64encode(f"{credentials.registry_user}:{credentials.registry_token}".encode()).decode()
    return json.dumps(
        {
            "auths": {
                image.registry: {
                    "username": credentials.registry_user,
                    "password": credentials.registry_token,
                    "auth": auth,
                }
            }
        }
    )


class ClusterSmokeTester:
    """Deploys the chart into a throwaway cluster and waits for it to become available.

    Runs once per pipeline: this exercises chart values, templating and
    service wiring, not CPU architecture.
    """

    def __init__(
        self,
        settings: ClusterSettings,
        runner: Runner = run_command,
        *,
        kind: str = "kind",
        helm: str = "helm",
        kubectl: str = "kubectl",
        provision_timeout: float = 300.0,
        clock: Clock = time.monotonic,
        source_ref: str = DEFAULT_REF,
        scripts_root: Path | None = None,
    ):
        self.settings = settings
        self.scripts_root = scripts_root or Path.cwd()
        self._run = runner
        self._kind = kind
        self._helm = helm
        self._kubectl = kubectl
        self._provision_timeout = provision_timeout
        self._clock = clock
        self._source_ref = source_ref

    @property
    def needs_checkout(self) -> bool:
        return is_relative_script(self.settings.script)

    def run(self, image: ImageReference, credentials: Credentials) -> VerificationOutcome:
        with tempfile.TemporaryDirectory(prefix="releasegate-kind-") as workdir:
            kubeconfig = Path(workdir) / "kubeconfig"
            env = {"KUBECONFIG": str(kubeconfig)}
            self._delete_cluster(env)
            try:
                try:
                    self._provision(image, credentials, Path(workdir), env)
                except ProvisioningError as exc:
                    return failed(Stage.CLUSTER_SMOKE, FailureKind.PROVISIONING_FAILURE, str(exc))
                return self._deploy_and_wait(image, credentials, env)
            finally:
                self._teardown(env)

    def _provision(self, image: ImageReference, credentials: Credentials, workdir: Path, env: dict[str, str]) -> None:
        settings = self.settings
        steps: list[list[str]] = [
            [
                self._kind, "create", "cluster",
                "--name", settings.cluster_name,
                "--kubeconfig", env["KUBECONFIG"],
                "--wait", f"{int(self._provision_timeout)}s",
            ],
        ]
        if settings.namespace != "default":
            steps.append([self._kubectl, "create", "namespace", settings.namespace])

        secret_file = workdir / "dockerconfig.json"
        secret_file.write_text(docker_config_json(image, credentials), encoding="utf-8")
        os.chmod(secret_file, 0o600)
        steps.append(
            [
                self._kubectl, "create", "secret", "generic", PULL_SECRET_NAME,
                "--namespace", settings.namespace,
                "--type=kubernetes.io/dockerconfigjson",
                f"--from-file=.dockerconfigjson={secret_file}",
            ]
        )

        for argv in steps:
            try:
                self._run(argv, env=env, timeout=self._provision_timeout, secrets=credentials.secrets)
            except (ExecError, ExecTimeout, ToolNotFound) as exc:
                raise ProvisioningError(f"cluster provisioning failed: {exc}") from exc

    def _deploy_and_wait(self, image: ImageReference, credentials: Credentials, env: dict[str, str]) -> VerificationOutcome:
        settings = self.settings
        deadline = Deadline(settings.timeout_seconds, clock=self._clock)
        limit = f"{settings.timeout_seconds:.0f}s"
        script = resolve_script(settings.script, self.scripts_root)

        if script is not None:
            script_env = {
                **env,
                "NAMESPACE": settings.namespace,
                "REGISTRY": image.registry,
                "IMAGE_NAME": image.name,
                "IMAGE_TAG": image.tag,
                "PULL_SECRET": PULL_SECRET_NAME,
                "SOURCE_REF": self._source_ref,
            }
            commands = [[str(script)]]
            envs = [script_env]
        else:
            install = [
                self._helm, "upgrade", "--install", settings.release, str(settings.chart),
                "--namespace", settings.namespace,
                "--set", f"image.repository={image.repository}",
                "--set", f"image.tag={image.tag}",
                "--set", f"imagePullSecrets[0].name={PULL_SECRET_NAME}",
            ]
            wait = [
                self._kubectl, "wait", "deployment",
                "--namespace", settings.namespace,
                "--selector", f"app.kubernetes.io/instance={settings.release}",
                "--for=condition=Available",
                f"--timeout={max(int(deadline.remaining()), 1)}s",
            ]
            commands = [install, wait]
            envs = [env, env]

        for argv, step_env in zip(commands, envs):
            try:
                self._run(argv, env=step_env, timeout=max(deadline.remaining(), 1.0), secrets=credentials.secrets)
            except ExecTimeout:
                return failed(Stage.CLUSTER_SMOKE, FailureKind.SERVICE_NOT_READY, f"service not ready within {limit}")
            except ExecError as exc:
                return failed(
                    Stage.CLUSTER_SMOKE,
                    FailureKind.SERVICE_NOT_READY,
                    f"{Path(argv[0]).name} failed: {exc.result.output}",
                )
            except ToolNotFound as exc:
                return failed(Stage.CLUSTER_SMOKE, FailureKind.TOOLING_ERROR, str(exc))

        logger.info("cluster smoke passed in namespace %s", settings.namespace)
        return passed(Stage.CLUSTER_SMOKE, f"release ready in namespace {settings.namespace}")

    def _teardown(self, env: dict[str, str]) -> None:
        """Best-effort cleanup; problems are logged, never raised."""
        settings = self.settings
        if settings.script is None:
            self._best_effort([self._helm, "uninstall", settings.release, "--namespace", settings.namespace], env)
        if settings.namespace != "default":
            self._best_effort([self._kubectl, "delete", "namespace", settings.namespace, "--wait=false"], env)
        self._delete_cluster(env)
        self._confirm_deleted(env)

    def _delete_cluster(self, env: dict[str, str]) -> None:
        self._best_effort([self._kind, "delete", "cluster", "--name", self.settings.cluster_name], env)

    def _confirm_deleted(self, env: dict[str, str]) -> bool:
        try:
            listed = self._run([self._kind, "get", "clusters"], env=env, check=False, timeout=60)
        except (ExecTimeout, ToolNotFound) as exc:
            logger.warning("could not confirm cluster deletion: %s", exc)
            return False
        if self.settings.cluster_name in listed.stdout.split():
            logger.warning("cluster %s still present after teardown", self.settings.cluster_name)
            return False
        return True

    def _best_effort(self, argv: list[str], env: dict[str, str]) -> None:
        try:
            result = self._run(argv, env=env, check=False, timeout=self._provision_timeout)
        except (ExecTimeout, ToolNotFound) as exc:
            logger.warning("teardown step failed: %s", exc)
            return
        if not result.ok:
            logger.warning("teardown step exited %d: %s", result.returncode, " ".join(result.argv))
