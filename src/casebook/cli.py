# src/casebook/cli.py
"""Casebook Command Line Interface.

Administrative client over the engine: provisioning, integrity checks,
lock and cache inspection.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import click
import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from casebook import __version__
from casebook.contracts.errors import CasebookError
from casebook.core.config import CasebookSettings, load_settings
from casebook.core.schema import SchemaMapper

if TYPE_CHECKING:
    from casebook.contracts.results import IntegrityReport
    from casebook.engine import CasebookEngine

__all__ = ["app"]

app = typer.Typer(
    name="casebook",
    help="Casebook: support cases on a rate-limited tabular workbook.",
    no_args_is_help=True,
)

_SETTINGS_OPTION = typer.Option(
    None,
    "--settings",
    "-s",
    help="Path to settings YAML file (defaults apply when omitted).",
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"casebook version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file.

    Raises:
        typer.Exit: If an explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)
    return load_dotenv(override=False)


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(False, "--no-dotenv", help="Skip loading .env file."),
    env_file: Path | None = typer.Option(None, "--env-file", help="Path to .env file (skips automatic search)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose/debug logging."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Output structured JSON logs."),
) -> None:
    """Casebook: support cases on a rate-limited tabular workbook."""
    from casebook.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")
    ctx.obj = {"verbose": verbose, "json_logs": json_logs}

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


def _load(ctx: typer.Context, settings_path: Path | None) -> CasebookSettings:
    """Load settings and apply their logging section; exits on bad configuration."""
    from casebook.core.logging import configure_logging

    if settings_path is None:
        return CasebookSettings()
    try:
        settings = load_settings(settings_path.expanduser())
    except (YamlParserError, YamlScannerError) as e:
        typer.echo(f"YAML syntax error in {settings_path}: {e.problem}", err=True)
        raise typer.Exit(1) from None
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings_path}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None

    flags = ctx.obj or {}
    configure_logging(
        json_output=flags.get("json_logs", False) or settings.logging.json_output,
        level="DEBUG" if flags.get("verbose") else settings.logging.level,
    )
    return settings


def _engine(settings: CasebookSettings) -> CasebookEngine:
    from casebook.engine import CasebookEngine

    try:
        return CasebookEngine(settings)
    except CasebookError as e:
        typer.echo(f"Error opening workbook: {e}", err=True)
        raise typer.Exit(1) from None


def _report_to_dict(report: IntegrityReport) -> dict[str, Any]:
    return {
        "operation_id": report.operation_id,
        "generated_at": report.generated_at.isoformat(),
        "total_records": report.total_records,
        "duration_ms": report.duration_ms,
        "summary": report.summary_counts,
        "findings": [
            {
                "rule": str(f.rule),
                "severity": str(f.severity),
                "message": f.message,
                "records": [asdict(ref) for ref in f.record_refs],
                "details": f.details,
            }
            for f in report.findings
        ],
        "corrections": [
            {
                "table_id": c.table_id,
                "case_id": c.case_id,
                "field": str(c.field),
                "old_value": c.old_value,
                "new_value": c.new_value,
                "applied": c.applied,
                "error": c.error,
            }
            for c in report.corrections_applied
        ],
        "recommendations": [asdict(r) for r in report.recommendations],
        "duplicates": asdict(report.duplicate_stats),
    }


def _print_report(report: IntegrityReport, *, show_findings: bool) -> None:
    counts = report.summary_counts
    typer.echo(f"Integrity check {report.operation_id}")
    typer.echo(f"  Records:  {report.total_records}")
    typer.echo(f"  Critical: {counts['critical']}")
    typer.echo(f"  Warnings: {counts['warning']}")
    typer.echo(f"  Duration: {report.duration_ms:.1f} ms")
    stats = report.duplicate_stats
    if stats.blocked or stats.truncated:
        typer.echo(f"  Duplicate pass: {stats.comparisons} comparisons (blocked={stats.blocked}, truncated={stats.truncated})")

    if show_findings:
        for finding in report.findings:
            color = typer.colors.RED if str(finding.severity) == "critical" else typer.colors.YELLOW
            typer.secho(f"  [{finding.severity}] {finding.rule}: {finding.message}", fg=color)

    for correction in report.corrections_applied:
        status = "fixed" if correction.applied else f"failed ({correction.error})"
        typer.echo(f"  Correction {correction.table_id}/{correction.case_id}: {correction.old_value!r} -> {correction.new_value!r} {status}")

    for rec in report.recommendations:
        typer.echo(f"  [{rec.priority}] {rec.title}: {rec.action}")


@app.command()
def provision(settings: Path | None = _SETTINGS_OPTION) -> None:
    """Create every missing table with its header row."""
    config = _load(click.get_current_context(), settings)
    with _engine(config) as engine:
        created = engine.provision_tables()
    if created:
        for table_id in created:
            typer.echo(f"Created {table_id}")
    else:
        typer.echo("All tables already exist.")


@app.command()
def check(
    settings: Path | None = _SETTINGS_OPTION,
    tables: list[str] | None = typer.Option(None, "--table", "-t", help="Table to audit (repeatable)."),
    auto_correct: bool = typer.Option(False, "--auto-correct", help="Fix channel mismatches."),
    no_duplicates: bool = typer.Option(False, "--no-duplicates", help="Skip the duplicate pass."),
    show_findings: bool = typer.Option(True, "--findings/--summary-only", help="List every finding."),
    fail_on_critical: bool = typer.Option(False, "--fail-on-critical", help="Exit 2 when critical findings exist."),
    output_format: Literal["console", "json"] = typer.Option(
        "console",
        "--format",
        "-f",
        help="Output format: 'console' (human-readable) or 'json'.",
    ),
) -> None:
    """Run the cross-table integrity check."""
    from casebook.engine import IntegrityOptions

    config = _load(click.get_current_context(), settings)
    options = IntegrityOptions(
        tables=tuple(tables) if tables else None,
        check_duplicates=not no_duplicates,
        auto_correct=auto_correct,
        use_cache=False,
    )
    with _engine(config) as engine:
        try:
            report = engine.run_integrity_check(options)
        except CasebookError as e:
            typer.echo(f"Integrity check failed: {e}", err=True)
            raise typer.Exit(1) from None

    if output_format == "json":
        typer.echo(json.dumps(_report_to_dict(report), indent=2, default=str))
    else:
        _print_report(report, show_findings=show_findings)

    if fail_on_critical and report.has_critical:
        raise typer.Exit(2)


@app.command()
def locks(
    settings: Path | None = _SETTINGS_OPTION,
    cleanup: bool = typer.Option(False, "--cleanup", help="Purge expired locks first."),
) -> None:
    """Show active locks."""
    config = _load(click.get_current_context(), settings)
    with _engine(config) as engine:
        if cleanup:
            purged = engine.locks.cleanup()
            typer.echo(f"Purged {purged} expired lock(s).")
        active = engine.get_lock_status()

    if not active:
        typer.echo("No active locks.")
        return
    for info in active:
        typer.echo(
            f"{info.lock_key}  owner={info.owner_id}  age={info.age_seconds:.1f}s  "
            f"timeout={info.timeout:.1f}s  remaining={info.remaining_seconds:.1f}s"
        )


@app.command("cache-stats")
def cache_stats(
    settings: Path | None = _SETTINGS_OPTION,
    warm: bool = typer.Option(False, "--warm", help="Read every table through the cache first."),
) -> None:
    """Show read cache statistics."""
    config = _load(click.get_current_context(), settings)
    with _engine(config) as engine:
        if warm:
            snapshot = engine.snapshot()
            for table_id, reason in snapshot.failures.items():
                typer.echo(f"Could not read {table_id}: {reason}", err=True)
            # Second pass is served from the cache
            engine.snapshot()
        stats = engine.get_cache_statistics()

    typer.echo(f"Entries:     {stats.size}")
    typer.echo(f"Hits:        {stats.hits}")
    typer.echo(f"Misses:      {stats.misses}")
    typer.echo(f"Hit rate:    {stats.hit_rate:.1%}")
    typer.echo(f"Evictions:   {stats.evictions}")
    typer.echo(f"Expirations: {stats.expirations}")
    typer.echo(f"TTL:         {stats.ttl_seconds:g}s")
    for operation, calls in sorted(stats.physical_calls.items()):
        typer.echo(f"Calls[{operation}]: {calls}")


@app.command("clear-cache")
def clear_cache(settings: Path | None = _SETTINGS_OPTION) -> None:
    """Drop every cached read."""
    config = _load(click.get_current_context(), settings)
    with _engine(config) as engine:
        cleared = engine.clear_cache()
    typer.echo(f"Cleared {cleared} cache entr{'y' if cleared == 1 else 'ies'}.")


@app.command()
def layout(
    table_id: str | None = typer.Argument(None, help="Table to show; lists tables when omitted."),
) -> None:
    """Show table ids, or the column layout of one table."""
    mapper = SchemaMapper()
    if table_id is None:
        for name in mapper.table_ids():
            typer.echo(f"{name}  ({mapper.channel_of(name)}, {mapper.segment_of(name)}, A:{mapper.final_column(name)})")
        return

    try:
        descriptor = mapper.descriptor(table_id)
    except CasebookError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    required = descriptor.required_fields
    for name, ref in sorted(descriptor.field_to_column.items(), key=lambda item: item[1].index):
        marker = " *" if name in required else ""
        typer.echo(f"{ref.letters:>3}  {name}{marker}")


if __name__ == "__main__":
    app()
