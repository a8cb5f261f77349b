"""releasegate CLI - verify a published container image before promotion."""

from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from releasegate import __version__
from releasegate.config import DEFAULT_CONFIG_FILENAME, ConfigError, PipelineConfig, load_config
from releasegate.log import configure_logging
from releasegate.orchestrator import Pipeline, PipelineResult
from releasegate.report import build_report, write_report
from releasegate.types import DEFAULT_PLATFORMS, Credentials, PlatformTarget

cli = typer.Typer(
    name="releasegate",
    help="releasegate - container release verification gate",
    no_args_is_help=True,
)
console = Console()

STATUS_STYLES = {"pass": "green", "fail": "bold red", "skipped": "yellow"}


def _version_option_callback(value: bool) -> None:
    """Handle eager --version option."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@cli.callback()
def _cli_callback(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show releasegate version and exit.",
        is_eager=True,
        callback=_version_option_callback,
    ),
) -> None:
    """Verify signatures, architectures and smoke-test a published image."""


def parse_platform_option(value: str) -> dict[str, str]:
    """Parse ``linux/arm/v7=arm``; without ``=`` the arch segment after the OS is used."""
    platform_id, sep, expected = value.partition("=")
    platform_id = platform_id.strip()
    if not sep:
        expected = PlatformTarget(platform_id, "").arch.split("/")[0]
    if not platform_id or not expected.strip():
        raise ConfigError(f"invalid platform {value!r}; expected OS/ARCH[=EXPECTED_ARCH]")
    return {"id": platform_id, "expected_arch": expected.strip()}


def read_public_key(value: str | None) -> str | None:
    """Cosign public key given inline, or as ``@path`` to a PEM file."""
    if not value:
        return None
    if value.startswith("@"):
        path = Path(value[1:]).expanduser()
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"cannot read cosign public key {path}: {exc}") from exc
    return value


def _print_outcomes(result: PipelineResult) -> None:
    table = Table(title=f"Verification of {result.image}")
    table.add_column("Stage")
    table.add_column("Platform")
    table.add_column("Status")
    table.add_column("Detail", overflow="fold")
    for outcome in result.outcomes:
        style = STATUS_STYLES[outcome.status.value]
        advisory = " (advisory)" if outcome.stage in result.advisory_stages else ""
        table.add_row(
            outcome.stage.value + advisory,
            outcome.platform.id if outcome.platform else "-",
            f"[{style}]{outcome.status.value}[/{style}]",
            outcome.detail,
        )
    console.print(table)


@cli.command(name="verify")
def verify_cmd(
    registry: str | None = typer.Option(None, "--registry", help="Registry host to pull the image from"),
    username: str | None = typer.Option(None, "--username", help="Registry username"),
    image: str | None = typer.Option(None, "--image", help="Image name within the registry"),
    tag: str | None = typer.Option(None, "--tag", help="Image tag to verify"),
    token: str | None = typer.Option(
        None,
        "--token",
        envvar="RELEASEGATE_TOKEN",
        help="Registry token (prefer the RELEASEGATE_TOKEN environment variable)",
        show_default=False,
    ),
    cosign_key: str | None = typer.Option(
        None,
        "--cosign-key",
        envvar="RELEASEGATE_COSIGN_KEY",
        help="Cosign public key (PEM text or @path). Without it the signature stage is skipped.",
        show_default=False,
    ),
    environment: str | None = typer.Option(None, "--environment", help="Target environment label for the report"),
    ref: str | None = typer.Option(None, "--ref", help="Commit, tag or branch the smoke scripts are checked out at"),
    scripts_root: Path | None = typer.Option(
        None,
        "--scripts-root",
        help="Git repository holding the smoke scripts; relative scripts run from a checkout of --ref",
    ),
    platform: list[str] | None = typer.Option(
        None,
        "--platform",
        help="Platform to verify, OS/ARCH[=EXPECTED_ARCH] (repeatable; replaces the default matrix)",
    ),
    advisory: list[str] | None = typer.Option(
        None,
        "--advisory",
        help="Stage whose failures are reported but do not fail the gate (repeatable)",
    ),
    chart: str | None = typer.Option(None, "--chart", help="Helm chart for the cluster smoke test"),
    namespace: str | None = typer.Option(None, "--namespace", help="Namespace for the cluster smoke test"),
    no_cluster: bool = typer.Option(False, "--no-cluster", help="Skip the cluster smoke test"),
    port: int | None = typer.Option(None, "--port", help="Container port of the primary endpoint"),
    path: str | None = typer.Option(None, "--path", help="HTTP path polled for readiness"),
    config: Path | None = typer.Option(None, "--config", "-c", help="YAML config file (default: ./releasegate.yaml)"),
    out: Path = typer.Option(Path("./out/releasegate"), "--out", "-o", help="Output directory for reports"),
    timestamp_mode: str = typer.Option(
        "deterministic",
        "--timestamp-mode",
        help="Timestamp mode: deterministic or wallclock",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Run the release verification pipeline.

    Exit codes:
      0 - Gate passed
      2 - Gate failed (a blocking check failed or the signature check aborted the run)
      1 - Tooling or configuration error
    """
    configure_logging(verbose)

    try:
        if timestamp_mode not in {"deterministic", "wallclock"}:
            raise ConfigError(f"unsupported timestamp mode: {timestamp_mode}")
        overrides: dict[str, Any] = {
            "registry": registry,
            "username": username,
            "image": image,
            "tag": tag,
            "environment": environment,
            "ref": ref,
            "scripts_root": str(scripts_root) if scripts_root else None,
            "platforms": [parse_platform_option(p) for p in platform] if platform else None,
            "advisory_stages": list(advisory) if advisory else None,
            "standalone": {"port": port, "path": path},
            "cluster": {
                "chart": chart,
                "namespace": namespace,
                "enabled": False if no_cluster else None,
            },
        }
        pipeline_config: PipelineConfig = load_config(config, overrides)
        if not pipeline_config.username:
            raise ConfigError("missing required configuration: username")
        if not token:
            raise ConfigError("missing required configuration: token (set RELEASEGATE_TOKEN)")
        credentials = Credentials(
            registry_user=pipeline_config.username,
            registry_token=token,
            signing_public_key=read_public_key(cosign_key),
        )
    except ConfigError as e:
        typer.echo(f"❌ Configuration error: {e}", err=True)
        raise typer.Exit(code=1) from e

    try:
        result = Pipeline(pipeline_config, credentials).run()
        report = build_report(
            result,
            timestamp_mode=timestamp_mode,
            environment=pipeline_config.environment,
            ref=pipeline_config.ref,
        )
        json_path, md_path = write_report(report, out)
    except Exception as e:
        typer.echo(f"❌ Verification run failed: {e}", err=True)
        raise typer.Exit(code=1) from e

    _print_outcomes(result)
    typer.echo(f"\nStatus: {report.status.upper()}")
    typer.echo("Reports written to:")
    typer.echo(f"  {json_path}")
    typer.echo(f"  {md_path}")

    if result.succeeded:
        typer.echo("\n✅ Release gate passed.")
        raise typer.Exit(code=0)
    typer.echo("\n❌ Release gate failed.")
    raise typer.Exit(code=2)


@cli.command(name="platforms")
def platforms_cmd(
    config: Path | None = typer.Option(None, "--config", "-c", help="YAML config file (default: ./releasegate.yaml)"),
) -> None:
    """List the platform matrix that would be verified."""
    platforms = DEFAULT_PLATFORMS
    if config is not None or Path(DEFAULT_CONFIG_FILENAME).exists():
        try:
            platforms = load_config(config, {"cluster": {"enabled": False}}).platforms
        except ConfigError as e:
            typer.echo(f"❌ Configuration error: {e}", err=True)
            raise typer.Exit(code=1) from e

    for target in platforms:
        typer.echo(f"{target.id}\t{target.expected_arch}")


if __name__ == "__main__":
    cli()
