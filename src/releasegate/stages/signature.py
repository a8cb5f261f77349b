"""Registry authentication and key-based cosign verification."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from releasegate.exec import ExecError, ExecTimeout, Runner, ToolNotFound, run_command
from releasegate.types import (
    Credentials,
    FailureKind,
    ImageReference,
    Stage,
    VerificationOutcome,
    failed,
    passed,
    skipped,
)

logger = logging.getLogger(__name__)

# cosign/registry output meaning the image could not be reached at all
UNREACHABLE_MARKERS = (
    "unauthorized",
    "denied",
    "manifest_unknown",
    "name_unknown",
    "no such host",
    "connection refused",
    "i/o timeout",
)


def normalize_public_key(key: str) -> str:
    """Accept PEM text with literal ``\\n`` escapes, as CI secret stores often hold it."""
    text = key.strip()
    if "\n" not in text and "\\n" in text:
        text = text.replace("\\n", "\n")
    return f"{text}\n"


class SignatureVerifier:
    """Authenticates to the registry and verifies the image signature with a public key.

    Keyless (transparency-log) verification is never attempted.
    """

    def __init__(
        self,
        runner: Runner = run_command,
        *,
        docker: str = "docker",
        cosign: str = "cosign",
        timeout: float = 300.0,
    ):
        self._run = runner
        self._docker = docker
        self._cosign = cosign
        self._timeout = timeout

    def login(self, image: ImageReference, credentials: Credentials) -> VerificationOutcome | None:
        """Log the container engine in to the registry. Returns a failure outcome or None."""
        try:
            self._run(
                [self._docker, "login", image.registry, "--username", credentials.registry_user, "--password-stdin"],
                input_text=credentials.registry_token,
                timeout=self._timeout,
                secrets=credentials.secrets,
            )
        except (ExecError, ExecTimeout) as exc:
            return failed(
                Stage.SIGNATURE,
                FailureKind.AUTHENTICATION_FAILURE,
                f"registry login to {image.registry} failed: {exc}",
            )
        except ToolNotFound as exc:
            return failed(Stage.SIGNATURE, FailureKind.TOOLING_ERROR, str(exc))
        return None

    def verify(self, image: ImageReference, credentials: Credentials) -> VerificationOutcome:
        login_failure = self.login(image, credentials)
        if login_failure is not None:
            return login_failure

        if not credentials.signing_public_key:
            return skipped(Stage.SIGNATURE, "no signing public key configured; signature not verified")

        with tempfile.TemporaryDirectory(prefix="releasegate-cosign-") as key_dir:
            key_path = Path(key_dir) / "cosign.pub"
            key_path.write_text(normalize_public_key(credentials.signing_public_key), encoding="utf-8")
            os.chmod(key_path, 0o600)
            return self._verify_with_key(image, key_path, credentials)

    def _verify_with_key(
        self,
        image: ImageReference,
        key_path: Path,
        credentials: Credentials,
    ) -> VerificationOutcome:
        try:
            self._run(
                [self._cosign, "verify", "--key", str(key_path), str(image)],
                timeout=self._timeout,
                secrets=credentials.secrets,
            )
        except ExecError as exc:
            output = exc.result.output
            if any(marker in output.lower() for marker in UNREACHABLE_MARKERS):
                return failed(
                    Stage.SIGNATURE,
                    FailureKind.AUTHENTICATION_FAILURE,
                    f"could not reach {image} for verification: {output}",
                )
            return failed(Stage.SIGNATURE, FailureKind.SIGNATURE_MISMATCH, f"signature verification failed: {output}")
        except ExecTimeout as exc:
            return failed(Stage.SIGNATURE, FailureKind.AUTHENTICATION_FAILURE, str(exc))
        except ToolNotFound as exc:
            return failed(Stage.SIGNATURE, FailureKind.TOOLING_ERROR, str(exc))

        logger.info("signature verified for %s", image)
        return passed(Stage.SIGNATURE, f"{image} verified against the configured public key")
