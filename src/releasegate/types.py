"""Core data types for release verification."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Stage(str, Enum):
    """Pipeline stages, in report order."""

    SIGNATURE = "signature"
    ARCHITECTURE = "architecture"
    STANDALONE_SMOKE = "standalone-smoke"
    CLUSTER_SMOKE = "cluster-smoke"


class Status(str, Enum):
    """Outcome of a single (stage, platform) check."""

    PASS = "pass"
    FAIL = "fail"
    SKIPPED = "skipped"


class FailureKind(str, Enum):
    """Why a check did not plainly pass."""

    AUTHENTICATION_FAILURE = "authentication_failure"
    SIGNATURE_MISMATCH = "signature_mismatch"
    ARCHITECTURE_MISMATCH = "architecture_mismatch"
    PULL_FAILURE = "pull_failure"
    PLATFORM_UNSUPPORTED = "platform_unsupported"
    SERVICE_NOT_READY = "service_not_ready"
    PROVISIONING_FAILURE = "provisioning_failure"
    TOOLING_ERROR = "tooling_error"


FATAL_KINDS = frozenset({FailureKind.AUTHENTICATION_FAILURE, FailureKind.SIGNATURE_MISMATCH})


@dataclass(frozen=True)
class ImageReference:
    """One published artifact: ``registry/name:tag``."""

    registry: str
    name: str
    tag: str

    def __post_init__(self) -> None:
        for label, value in (("registry", self.registry), ("name", self.name), ("tag", self.tag)):
            if not value or not value.strip():
                raise ValueError(f"image reference {label} must be non-empty")

    @property
    def repository(self) -> str:
        return f"{self.registry}/{self.name}"

    def __str__(self) -> str:
        return f"{self.repository}:{self.tag}"


@dataclass(frozen=True)
class PlatformTarget:
    """A platform the image manifest claims to support."""

    id: str
    expected_arch: str

    @property
    def slug(self) -> str:
        """Filesystem/container-name safe form, e.g. ``linux-arm-v7``."""
        return self.id.replace("/", "-")

    @property
    def arch(self) -> str:
        """Architecture path segment(s) after the OS, e.g. ``arm/v7``."""
        _, _, rest = self.id.partition("/")
        return rest or self.id

    def __str__(self) -> str:
        return self.id


DEFAULT_PLATFORMS: tuple[PlatformTarget, ...] = (
    PlatformTarget("linux/amd64", "amd64"),
    PlatformTarget("linux/arm64", "arm64"),
    PlatformTarget("linux/arm/v7", "arm"),
)


@dataclass(frozen=True)
class Credentials:
    """Registry and signing material. Secret fields never appear in repr."""

    registry_user: str
    registry_token: str = field(repr=False)
    signing_public_key: str | None = field(default=None, repr=False)

    @property
    def secrets(self) -> tuple[str, ...]:
        return tuple(s for s in (self.registry_token, self.signing_public_key) if s)


@dataclass(frozen=True)
class VerificationOutcome:
    """Result of one (stage, platform) check."""

    stage: Stage
    status: Status
    detail: str
    platform: PlatformTarget | None = None
    kind: FailureKind | None = None

    @property
    def key(self) -> tuple[Stage, str | None]:
        return (self.stage, self.platform.id if self.platform else None)

    @property
    def fatal(self) -> bool:
        return self.status is Status.FAIL and (self.stage is Stage.SIGNATURE or self.kind in FATAL_KINDS)

    def to_dict(self) -> dict[str, str | None]:
        return {
            "stage": self.stage.value,
            "platform": self.platform.id if self.platform else None,
            "status": self.status.value,
            "kind": self.kind.value if self.kind else None,
            "detail": self.detail,
        }


def passed(stage: Stage, detail: str, platform: PlatformTarget | None = None) -> VerificationOutcome:
    return VerificationOutcome(stage=stage, status=Status.PASS, detail=detail, platform=platform)


def failed(
    stage: Stage,
    kind: FailureKind,
    detail: str,
    platform: PlatformTarget | None = None,
) -> VerificationOutcome:
    return VerificationOutcome(stage=stage, status=Status.FAIL, detail=detail, platform=platform, kind=kind)


def skipped(
    stage: Stage,
    detail: str,
    platform: PlatformTarget | None = None,
    kind: FailureKind | None = None,
) -> VerificationOutcome:
    return VerificationOutcome(stage=stage, status=Status.SKIPPED, detail=detail, platform=platform, kind=kind)
