"""Unit tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from releasegate.config import ConfigError, PipelineConfig, load_config
from releasegate.types import DEFAULT_PLATFORMS, PlatformTarget, Stage

BASE = {
    "registry": "ghcr.io",
    "image": "acme/service",
    "tag": "1.2.3",
    "cluster": {"chart": "./charts/service"},
}


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_minimal_config_uses_defaults(tmp_path: Path) -> None:
    config = PipelineConfig.from_dict({**BASE, "scripts_root": str(tmp_path)})

    assert str(config.image) == "ghcr.io/acme/service:1.2.3"
    assert config.platforms == DEFAULT_PLATFORMS
    assert config.advisory_stages == frozenset()
    assert config.ref == "master"
    assert config.standalone.port == 80
    assert config.standalone.timeout_seconds == 600
    assert config.cluster.timeout_seconds == 300
    assert config.cluster.namespace == "default"


def test_missing_required_keys() -> None:
    with pytest.raises(ConfigError, match="missing required configuration: registry, tag"):
        PipelineConfig.from_dict({"image": "acme/service"})


@pytest.mark.parametrize("key", ["token", "password", "cosign_key"])
def test_secrets_are_rejected(key) -> None:
    with pytest.raises(ConfigError, match="secrets must not be stored"):
        PipelineConfig.from_dict({**BASE, key: "hunter2"})


def test_custom_platforms() -> None:
    config = PipelineConfig.from_dict({**BASE, "platforms": [{"id": "linux/s390x", "expected_arch": "s390x"}]})

    assert config.platforms == (PlatformTarget("linux/s390x", "s390x"),)


@pytest.mark.parametrize(
    ("platforms", "message"),
    [
        ([], "non-empty list"),
        ([{"id": "linux/amd64"}], "expected_arch"),
        ([{"id": "linux/amd64", "expected_arch": "amd64"}] * 2, "duplicate platforms: linux/amd64"),
    ],
)
def test_invalid_platforms(platforms, message) -> None:
    with pytest.raises(ConfigError, match=message):
        PipelineConfig.from_dict({**BASE, "platforms": platforms})


def test_advisory_stages() -> None:
    config = PipelineConfig.from_dict({**BASE, "advisory_stages": ["cluster-smoke"]})

    assert config.advisory_stages == frozenset({Stage.CLUSTER_SMOKE})


def test_signature_cannot_be_advisory() -> None:
    with pytest.raises(ConfigError, match="signature stage cannot be advisory"):
        PipelineConfig.from_dict({**BASE, "advisory_stages": ["signature"]})


def test_unknown_advisory_stage() -> None:
    with pytest.raises(ConfigError, match="unknown stage 'lint'"):
        PipelineConfig.from_dict({**BASE, "advisory_stages": ["lint"]})


def test_cluster_needs_chart_or_script() -> None:
    with pytest.raises(ConfigError, match="cluster.chart or cluster.script"):
        PipelineConfig.from_dict({**BASE, "cluster": {}})

    config = PipelineConfig.from_dict({**BASE, "cluster": {"enabled": False}})
    assert not config.cluster.enabled


def test_script_paths_are_kept_relative_to_the_scripts_checkout(tmp_path: Path) -> None:
    config = PipelineConfig.from_dict(
        {
            **BASE,
            "scripts_root": str(tmp_path),
            "standalone": {"script": "scripts/smoke.sh", "path": "healthz"},
            "cluster": {"script": "/opt/k8s-smoke.sh"},
        }
    )

    assert config.scripts_root == tmp_path
    assert config.standalone.script == Path("scripts/smoke.sh")
    assert config.standalone.path == "/healthz"
    assert config.cluster.script == Path("/opt/k8s-smoke.sh")


@pytest.mark.parametrize("value", [0, -5, "soon"])
def test_timeouts_must_be_positive_numbers(value) -> None:
    with pytest.raises(ConfigError, match="standalone.timeout_seconds"):
        PipelineConfig.from_dict({**BASE, "standalone": {"timeout_seconds": value}})


def test_load_config_reads_yaml_and_applies_overrides(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "releasegate.yaml",
        "registry: ghcr.io\n"
        "image: acme/service\n"
        "tag: 1.0.0\n"
        "environment: staging\n"
        "standalone:\n"
        "  port: 8080\n"
        "cluster:\n"
        "  chart: ./charts/service\n"
        "  namespace: smoke\n",
    )

    config = load_config(
        path,
        {"tag": "1.2.3", "environment": None, "standalone": {"port": None, "path": "/ready"}, "cluster": {"namespace": None}},
    )

    assert config.image.tag == "1.2.3"
    assert config.environment == "staging"
    assert config.standalone.port == 8080
    assert config.standalone.path == "/ready"
    assert config.cluster.namespace == "smoke"


def test_load_config_picks_up_default_file(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    _write(tmp_path / "releasegate.yaml", "registry: ghcr.io\nimage: acme/service\ntag: '2'\ncluster:\n  enabled: false\n")

    config = load_config(None)

    assert config.image.tag == "2"


def test_load_config_without_file_uses_overrides_only(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    config = load_config(None, {**BASE, "cluster": {"enabled": False}})

    assert config.image.name == "acme/service"


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="config file not found"):
        load_config(tmp_path / "nope.yaml")


def test_malformed_yaml_is_an_error(tmp_path: Path) -> None:
    path = _write(tmp_path / "bad.yaml", "registry: [unclosed\n")

    with pytest.raises(ConfigError, match="Malformed YAML"):
        load_config(path)


def test_non_mapping_yaml_is_an_error(tmp_path: Path) -> None:
    path = _write(tmp_path / "list.yaml", "- a\n- b\n")

    with pytest.raises(ConfigError, match="expected a mapping"):
        load_config(path)


@pytest.mark.parametrize("value", ["false", "no", 0, None])
def test_cluster_enabled_must_be_boolean(value) -> None:
    with pytest.raises(ConfigError, match="cluster.enabled must be true or false"):
        PipelineConfig.from_dict({**BASE, "cluster": {"enabled": value, "chart": "./charts/service"}})


def test_quoted_false_in_yaml_is_rejected(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "releasegate.yaml",
        "registry: ghcr.io\nimage: acme/service\ntag: '1'\ncluster:\n  enabled: \"false\"\n",
    )

    with pytest.raises(ConfigError, match="cluster.enabled"):
        load_config(path)


@pytest.mark.parametrize("section", ["standalone", "cluster"])
def test_sections_must_be_mappings(tmp_path: Path, section) -> None:
    path = _write(
        tmp_path / "releasegate.yaml",
        f"registry: ghcr.io\nimage: acme/service\ntag: '1'\n{section}:\n  - port\n  - 8080\n",
    )

    with pytest.raises(ConfigError, match=f"{section} must be a mapping, got list"):
        load_config(path)
