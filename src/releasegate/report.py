"""Verification report writer (JSON + Markdown)."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal, TextIO

from releasegate.orchestrator import PipelineResult, PipelineState
from releasegate.schemas.validator import validate_data
from releasegate.types import Status

REPORT_JSON_FILENAME = "VERIFICATION_REPORT.json"
REPORT_MD_FILENAME = "VERIFICATION_REPORT.md"
REPORT_SCHEMA = "verification_report"

STATUS_SYMBOLS = {"pass": "✅", "fail": "❌", "skipped": "⏭️"}


@dataclass
class PipelineReport:
    """Serializable summary of one pipeline run."""

    schema_version: str = "1.0"
    generated_at: str = ""
    timestamp_mode: str = "deterministic"
    status: Literal["passed", "failed", "aborted"] = "passed"
    image: str = ""
    state: str = PipelineState.IDLE.value
    environment: str | None = None
    ref: str | None = None
    scripts_commit: str | None = None
    advisory_stages: list[str] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=dict)
    outcomes: list[dict[str, Any]] = field(default_factory=list)


def _get_deterministic_timestamp() -> str:
    """Get deterministic timestamp for testing."""
    return "1970-01-01T00:00:00Z"


def _get_wallclock_timestamp() -> str:
    """Get current wallclock timestamp."""
    return datetime.now(UTC).isoformat()


def build_report(
    result: PipelineResult,
    *,
    timestamp_mode: str = "deterministic",
    environment: str | None = None,
    ref: str | None = None,
) -> PipelineReport:
    if timestamp_mode not in {"deterministic", "wallclock"}:
        raise ValueError(f"Unsupported timestamp mode: {timestamp_mode}. Expected deterministic or wallclock.")

    if result.state is PipelineState.ABORTED:
        status = "aborted"
    else:
        status = "passed" if result.succeeded else "failed"

    return PipelineReport(
        generated_at=_get_deterministic_timestamp() if timestamp_mode == "deterministic" else _get_wallclock_timestamp(),
        timestamp_mode=timestamp_mode,
        status=status,
        image=str(result.image),
        state=result.state.value,
        environment=environment,
        ref=ref,
        scripts_commit=result.scripts_commit,
        advisory_stages=sorted(s.value for s in result.advisory_stages),
        summary={
            "passed": sum(1 for o in result.outcomes if o.status is Status.PASS),
            "failed": sum(1 for o in result.outcomes if o.status is Status.FAIL),
            "skipped": sum(1 for o in result.outcomes if o.status is Status.SKIPPED),
            "blocking": len(result.blocking_failures),
        },
        outcomes=[o.to_dict() for o in result.outcomes],
    )


def write_report(report: PipelineReport, out_dir: Path) -> tuple[Path, Path]:
    """Write VERIFICATION_REPORT.json and VERIFICATION_REPORT.md; return their paths.

    Raises:
        ValueError: If the report does not match the verification_report schema.
    """
    data = asdict(report)
    validate_data(data, REPORT_SCHEMA)

    out_dir.mkdir(parents=True, exist_ok=True)

    json_path = out_dir / REPORT_JSON_FILENAME
    json_path.write_text(
        json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False),
        encoding="utf-8",
    )

    md_path = out_dir / REPORT_MD_FILENAME
    with open(md_path, "w", encoding="utf-8") as f:
        _write_markdown_report(f, report)

    return json_path, md_path


def _write_markdown_report(f: TextIO, report: PipelineReport) -> None:
    """Write human-readable markdown report."""
    f.write("# Release Verification Report\n\n")

    status_emoji = "✅" if report.status == "passed" else "❌"
    f.write(f"**Status**: {status_emoji} {report.status.upper()}\n\n")
    f.write(f"**Image**: `{report.image}`\n\n")
    f.write(f"**Generated**: {report.generated_at} ({report.timestamp_mode})\n\n")
    if report.environment:
        f.write(f"**Environment**: {report.environment}\n\n")
    if report.ref and report.scripts_commit:
        f.write(f"**Scripts ref**: `{report.ref}` at `{report.scripts_commit}`\n\n")
    elif report.ref:
        f.write(f"**Ref**: `{report.ref}`\n\n")

    f.write("## Summary\n\n")
    f.write(f"- Passed: {report.summary['passed']}\n")
    f.write(f"- Failed: {report.summary['failed']}\n")
    f.write(f"- Skipped: {report.summary['skipped']}\n")
    f.write(f"- Blocking failures: {report.summary['blocking']}\n")
    if report.advisory_stages:
        f.write(f"- Advisory stages: {', '.join(report.advisory_stages)}\n")
    f.write("\n")

    if report.status == "aborted":
        f.write("Signature check failed; no further stages ran.\n\n")

    f.write("## Outcomes\n\n")
    f.write("| Stage | Platform | Status | Kind | Detail |\n")
    f.write("|---|---|---|---|---|\n")
    for outcome in report.outcomes:
        symbol = STATUS_SYMBOLS.get(outcome["status"], "")
        detail = str(outcome["detail"]).replace("|", "\\|").replace("\n", " ")
        f.write(
            f"| {outcome['stage']} | {outcome['platform'] or '-'} | {symbol} {outcome['status']} "
            f"| {outcome['kind'] or '-'} | {detail} |\n"
        )
    f.write("\n")

    f.write("## Exit Code\n\n")
    if report.status == "passed":
        f.write("0 (success - gate passed)\n")
    else:
        f.write("2 (policy violation - gate failed)\n")
