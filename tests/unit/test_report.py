"""Unit tests for the verification report writer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from releasegate.orchestrator import PipelineResult, PipelineState
from releasegate.report import REPORT_JSON_FILENAME, REPORT_MD_FILENAME, build_report, write_report
from releasegate.types import DEFAULT_PLATFORMS, FailureKind, Stage, failed, passed, skipped

AMD64, ARM64, _ = DEFAULT_PLATFORMS


def _result(image, *outcomes, state=PipelineState.AGGREGATED, advisory=frozenset()) -> PipelineResult:
    return PipelineResult(image=image, state=state, outcomes=tuple(outcomes), advisory_stages=advisory)


def test_passed_report(image) -> None:
    result = _result(image, skipped(Stage.SIGNATURE, "no key"), passed(Stage.ARCHITECTURE, "ok", AMD64))

    report = build_report(result, environment="prod", ref="v1.2.3")

    assert report.status == "passed"
    assert report.generated_at == "1970-01-01T00:00:00Z"
    assert report.image == "ghcr.io/acme/service:1.2.3"
    assert report.summary == {"passed": 1, "failed": 0, "skipped": 1, "blocking": 0}
    assert report.outcomes[1]["platform"] == "linux/amd64"


def test_failed_report_counts_blocking_separately(image) -> None:
    result = _result(
        image,
        failed(Stage.ARCHITECTURE, FailureKind.ARCHITECTURE_MISMATCH, "expected arm64, got amd64", ARM64),
        failed(Stage.CLUSTER_SMOKE, FailureKind.SERVICE_NOT_READY, "service not ready within 300s"),
        advisory=frozenset({Stage.CLUSTER_SMOKE}),
    )

    report = build_report(result)

    assert report.status == "failed"
    assert report.summary["failed"] == 2
    assert report.summary["blocking"] == 1
    assert report.advisory_stages == ["cluster-smoke"]


def test_aborted_report(image) -> None:
    result = _result(
        image,
        failed(Stage.SIGNATURE, FailureKind.SIGNATURE_MISMATCH, "no matching signatures"),
        state=PipelineState.ABORTED,
    )

    report = build_report(result)

    assert report.status == "aborted"
    assert report.state == "aborted"


def test_rejects_unknown_timestamp_mode(image) -> None:
    with pytest.raises(ValueError, match="Unsupported timestamp mode"):
        build_report(_result(image), timestamp_mode="local")


def test_wallclock_timestamp(image) -> None:
    report = build_report(_result(image), timestamp_mode="wallclock")

    assert report.generated_at != "1970-01-01T00:00:00Z"
    assert report.timestamp_mode == "wallclock"


def test_write_report_is_deterministic(image, tmp_path: Path) -> None:
    result = _result(
        image,
        passed(Stage.SIGNATURE, "verified"),
        failed(Stage.ARCHITECTURE, FailureKind.PULL_FAILURE, "could not pull | retry", ARM64),
    )

    first = write_report(build_report(result), tmp_path / "a")
    second = write_report(build_report(result), tmp_path / "b")

    assert first[0].name == REPORT_JSON_FILENAME
    assert first[1].name == REPORT_MD_FILENAME
    assert first[0].read_bytes() == second[0].read_bytes()
    data = json.loads(first[0].read_text(encoding="utf-8"))
    assert data["status"] == "failed"
    assert data["outcomes"][1]["kind"] == "pull_failure"

    markdown = first[1].read_text(encoding="utf-8")
    assert "# Release Verification Report" in markdown
    assert "could not pull \\| retry" in markdown
    assert "2 (policy violation - gate failed)" in markdown


def test_aborted_markdown_explains_stop(image, tmp_path: Path) -> None:
    result = _result(
        image,
        failed(Stage.SIGNATURE, FailureKind.AUTHENTICATION_FAILURE, "unauthorized"),
        state=PipelineState.ABORTED,
    )

    _, md_path = write_report(build_report(result), tmp_path)

    assert "Signature check failed; no further stages ran." in md_path.read_text(encoding="utf-8")


def test_write_report_refuses_schema_violations(image, tmp_path: Path) -> None:
    report = build_report(_result(image))
    report.status = "green"

    with pytest.raises(ValueError, match="Schema validation failed"):
        write_report(report, tmp_path / "out")

    assert not (tmp_path / "out").exists()


def test_markdown_names_commit_the_scripts_ran_from(image, tmp_path: Path) -> None:
    result = PipelineResult(
        image=image,
        state=PipelineState.AGGREGATED,
        outcomes=(passed(Stage.SIGNATURE, "verified"),),
        scripts_commit="abc1234",
    )

    report = build_report(result, ref="v1.2.3")
    json_path, md_path = write_report(report, tmp_path)

    assert report.scripts_commit == "abc1234"
    assert json.loads(json_path.read_text(encoding="utf-8"))["scripts_commit"] == "abc1234"
    assert "**Scripts ref**: `v1.2.3` at `abc1234`" in md_path.read_text(encoding="utf-8")
