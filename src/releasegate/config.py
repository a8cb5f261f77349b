"""Pipeline configuration loader.

Configuration is read from an optional ``releasegate.yaml`` file and then
overlaid with CLI options. Secrets (registry token, cosign key) are never read
from the file; they arrive through CLI options or environment variables.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from releasegate.types import DEFAULT_PLATFORMS, ImageReference, PlatformTarget, Stage

DEFAULT_CONFIG_FILENAME = "releasegate.yaml"
DEFAULT_REF = "master"

STANDALONE_TIMEOUT_SECONDS = 600
CLUSTER_TIMEOUT_SECONDS = 300

SECRET_KEYS = frozenset({"token", "registry_token", "cosign_key", "signing_public_key", "password"})


class ConfigError(RuntimeError):
    """Raised when configuration is missing, malformed, or inconsistent."""


@dataclass(frozen=True)
class StandaloneSettings:
    """Single-container smoke test settings."""

    port: int = 80
    path: str = "/"
    timeout_seconds: float = STANDALONE_TIMEOUT_SECONDS
    reference_image: str = "alpine"
    script: Path | None = None


@dataclass(frozen=True)
class ClusterSettings:
    """Ephemeral-cluster smoke test settings."""

    enabled: bool = True
    chart: str | None = None
    namespace: str = "default"
    release: str = "releasegate-smoke"
    cluster_name: str = "releasegate-smoke"
    timeout_seconds: float = CLUSTER_TIMEOUT_SECONDS
    script: Path | None = None


@dataclass(frozen=True)
class PipelineConfig:
    """Everything the orchestrator needs apart from credentials.

    ``scripts_root`` is the git repository holding the smoke scripts. Relative
    ``standalone.script`` and ``cluster.script`` paths are resolved inside a
    checkout of ``ref`` taken from it; absolute paths are used as they are.
    """

    image: ImageReference
    platforms: tuple[PlatformTarget, ...] = DEFAULT_PLATFORMS
    advisory_stages: frozenset[Stage] = frozenset()
    username: str | None = None
    environment: str | None = None
    ref: str = DEFAULT_REF
    scripts_root: Path = field(default_factory=Path.cwd)
    standalone: StandaloneSettings = field(default_factory=StandaloneSettings)
    cluster: ClusterSettings = field(default_factory=ClusterSettings)
    max_workers: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineConfig:
        """Parse and validate a config dict into PipelineConfig."""
        leaked = sorted(SECRET_KEYS & set(data))
        if leaked:
            raise ConfigError(f"secrets must not be stored in configuration files: {', '.join(leaked)}")

        missing = [key for key in ("registry", "image", "tag") if not data.get(key)]
        if missing:
            raise ConfigError(f"missing required configuration: {', '.join(missing)}")

        try:
            image = ImageReference(
                registry=str(data["registry"]).rstrip("/"),
                name=str(data["image"]),
                tag=str(data["tag"]),
            )
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc

        scripts_root = Path(data.get("scripts_root") or Path.cwd()).expanduser()

        return cls(
            image=image,
            platforms=_parse_platforms(data.get("platforms")),
            advisory_stages=_parse_stages(data.get("advisory_stages") or []),
            username=data.get("username") or None,
            environment=data.get("environment") or None,
            ref=str(data.get("ref") or DEFAULT_REF),
            scripts_root=scripts_root,
            standalone=_parse_standalone(_section(data, "standalone")),
            cluster=_parse_cluster(_section(data, "cluster")),
            max_workers=_optional_int(data.get("max_workers"), "max_workers"),
        )


def _parse_platforms(raw: Any) -> tuple[PlatformTarget, ...]:
    if raw is None:
        return DEFAULT_PLATFORMS
    if not isinstance(raw, list) or not raw:
        raise ConfigError("platforms must be a non-empty list")

    platforms: list[PlatformTarget] = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("id") or not entry.get("expected_arch"):
            raise ConfigError(f"platform entries need 'id' and 'expected_arch': {entry!r}")
        platforms.append(PlatformTarget(id=str(entry["id"]), expected_arch=str(entry["expected_arch"])))

    ids = [p.id for p in platforms]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ConfigError(f"duplicate platforms: {', '.join(duplicates)}")
    return tuple(platforms)


def _parse_stages(raw: Any) -> frozenset[Stage]:
    if not isinstance(raw, list):
        raise ConfigError("advisory_stages must be a list")
    stages = set()
    for value in raw:
        try:
            stage = Stage(value)
        except ValueError as exc:
            valid = ", ".join(s.value for s in Stage)
            raise ConfigError(f"unknown stage {value!r}; expected one of: {valid}") from exc
        if stage is Stage.SIGNATURE:
            raise ConfigError("the signature stage cannot be advisory")
        stages.add(stage)
    return frozenset(stages)


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    raw = data.get(key)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{key} must be a mapping, got {type(raw).__name__}")
    return raw


def _parse_standalone(raw: dict[str, Any]) -> StandaloneSettings:
    defaults = StandaloneSettings()
    path = str(raw.get("path", defaults.path))
    if not path.startswith("/"):
        path = f"/{path}"
    return StandaloneSettings(
        port=_optional_int(raw.get("port"), "standalone.port") or defaults.port,
        path=path,
        timeout_seconds=_positive_float(raw.get("timeout_seconds", defaults.timeout_seconds), "standalone.timeout_seconds"),
        reference_image=str(raw.get("reference_image") or defaults.reference_image),
        script=_script_path(raw.get("script")),
    )


def _parse_cluster(raw: dict[str, Any]) -> ClusterSettings:
    defaults = ClusterSettings()
    enabled = raw.get("enabled", defaults.enabled)
    if not isinstance(enabled, bool):
        raise ConfigError(f"cluster.enabled must be true or false, got {enabled!r}")
    settings = ClusterSettings(
        enabled=enabled,
        chart=raw.get("chart") or None,
        namespace=str(raw.get("namespace") or defaults.namespace),
        release=str(raw.get("release") or defaults.release),
        cluster_name=str(raw.get("cluster_name") or defaults.cluster_name),
        timeout_seconds=_positive_float(raw.get("timeout_seconds", defaults.timeout_seconds), "cluster.timeout_seconds"),
        script=_script_path(raw.get("script")),
    )
    if settings.enabled and not settings.chart and not settings.script:
        raise ConfigError("cluster smoke test needs either cluster.chart or cluster.script (or cluster.enabled: false)")
    return settings


def _script_path(raw: Any) -> Path | None:
    if not raw:
        return None
    return Path(str(raw)).expanduser()


def _optional_int(raw: Any, name: str) -> int | None:
    if raw is None:
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _positive_float(raw: Any, name: str) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, dict):
            current = merged.get(key)
            merged[key] = _merge(current if isinstance(current, dict) else {}, value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Path | None, overrides: dict[str, Any] | None = None) -> PipelineConfig:
    """Load configuration from YAML (if present) and apply CLI overrides.

    Args:
        config_path: Explicit config file; when None, ``releasegate.yaml`` in
            the current directory is used if it exists.
        overrides: Values from the command line. ``None`` values are ignored
            so that unset options never clobber file values.

    Raises:
        ConfigError: If the file is malformed or the result is invalid.
    """
    data: dict[str, Any] = {}
    path = config_path or Path(DEFAULT_CONFIG_FILENAME)

    if config_path is not None and not path.exists():
        raise ConfigError(f"config file not found: {path}")

    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Malformed YAML config at {path}: {e}") from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Invalid config structure in {path}: expected a mapping")
        data = loaded

    return PipelineConfig.from_dict(_merge(data, overrides or {}))
