"""CLI entrypoint for gcalsync.

Commands
- sync:    one-way incremental sync (Google Calendar -> local CalDAV calendars); default
- status:  last sync time and tracked calendars
- reset:   forget all sync cursors (next run is a full sync); --purge empties mirrored calendars
- setup:   interactive Google OAuth consent, writes the token store
- help:    show usage

Notes
- Configuration precedence: CLI > ENV (GCALSYNC__) > YAML file, see config loader.
- Exit codes: 0 success, 2 partial, 3 fatal.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, NoReturn

import typer

from .config import DEFAULT_CONFIG_PATH, AppConfig, load_config
from .errors import CredentialError, GCalSyncError, LocalStoreAccessError
from .google.auth import run_setup
from .logging import setup_logging
from .sync.orchestrator import Orchestrator

app = typer.Typer(
    add_completion=False,
    invoke_without_command=True,
    help="One-way Google Calendar → CalDAV incremental sync",
)

EXIT_FATAL = 3

_HINTS: dict[type[GCalSyncError], str] = {
    CredentialError: "Run `gcalsync setup` to authorize access to Google Calendar.",
    LocalStoreAccessError: (
        "Check caldav.base_url, caldav.username and GCALSYNC_CALDAV_PASSWORD, "
        "and that state.db_path is writable."
    ),
}

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    exists=False,
    readable=True,
    help=f"Path to YAML config file (default {DEFAULT_CONFIG_PATH}).",
    show_default=False,
)
VerboseOption = typer.Option(
    False, "--verbose", "-v", help="Set log level to DEBUG (overrides config.logging.level)."
)
DryRunOption = typer.Option(
    None,
    "--dry-run/--no-dry-run",
    help="Fetch and translate only; write nothing locally and keep cursors.",
    show_default=False,
)


def _cli_overrides_from_args(*, dry_run: bool | None, verbose: bool) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if dry_run is not None:
        overrides["sync"] = {"dry_run": dry_run}
    if verbose:
        overrides["logging"] = {"level": "DEBUG"}
    return overrides


def _load(config: Path | None, overrides: dict[str, Any]) -> AppConfig:
    path = str(config) if config else DEFAULT_CONFIG_PATH
    try:
        cfg = load_config(file_path=path, cli_overrides=overrides)
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=EXIT_FATAL) from e
    setup_logging(level=cfg.logging.level, json=cfg.logging.as_json)
    return cfg


def _fail(exc: GCalSyncError) -> NoReturn:
    typer.echo(f"error: {exc}", err=True)
    for kind, hint in _HINTS.items():
        if isinstance(exc, kind):
            typer.echo(f"hint: {hint}", err=True)
            break
    raise typer.Exit(code=EXIT_FATAL) from exc


def describe_elapsed(delta: timedelta) -> str:
    """'N hours M minutes ago' (days folded into hours)."""
    minutes = max(int(delta.total_seconds() // 60), 0)
    hours, minutes = divmod(minutes, 60)
    return f"{hours} hours {minutes} minutes ago"


def _with_group_options(
    ctx: typer.Context, config: Path | None, dry_run: bool | None, verbose: bool
) -> tuple[Path | None, bool | None, bool]:
    """Fill options a subcommand left unset from those given before it."""
    group: dict[str, Any] = ctx.obj or {}
    if config is None:
        config = group.get("config")
    if dry_run is None:
        dry_run = group.get("dry_run")
    return config, dry_run, verbose or bool(group.get("verbose"))


def _run_sync(config: Path | None, dry_run: bool | None, verbose: bool) -> NoReturn:
    cfg = _load(config, _cli_overrides_from_args(dry_run=dry_run, verbose=verbose))
    orch = Orchestrator(cfg)
    try:
        exit_code, summary = orch.run()
    except GCalSyncError as e:
        _fail(e)
    finally:
        orch.close()

    agg = summary.aggregate()
    prefix = "gcalsync sync (dry-run)" if cfg.sync.dry_run else "gcalsync sync"
    typer.echo(
        f"{prefix} summary: calendars={len(summary.calendars)} "
        f"fetched={agg['fetched']} created={agg['created']} updated={agg['updated']} "
        f"deleted={agg['deleted']} skipped={agg['skipped']} errors={agg['errors']}"
    )
    raise typer.Exit(code=exit_code)


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = ConfigOption,
    dry_run: bool | None = DryRunOption,
    verbose: bool = VerboseOption,
) -> None:
    """Run `sync` when no command is given."""
    ctx.obj = {"config": config, "dry_run": dry_run, "verbose": verbose}
    if ctx.invoked_subcommand is None:
        _run_sync(config, dry_run, verbose)


@app.command(help="Run one-way incremental sync (Google Calendar → CalDAV).")
def sync(
    ctx: typer.Context,
    config: Path | None = ConfigOption,
    dry_run: bool | None = DryRunOption,
    verbose: bool = VerboseOption,
) -> None:
    _run_sync(*_with_group_options(ctx, config, dry_run, verbose))


@app.command(help="Show last sync time and tracked calendars.")
def status(
    ctx: typer.Context,
    config: Path | None = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    config, _, verbose = _with_group_options(ctx, config, None, verbose)
    cfg = _load(config, _cli_overrides_from_args(dry_run=None, verbose=verbose))
    orch = Orchestrator(cfg)
    try:
        report = orch.status()
    except GCalSyncError as e:
        _fail(e)
    finally:
        orch.close()

    if report.last_sync is None:
        typer.echo("Last sync: Never")
    else:
        ago = describe_elapsed(datetime.now(tz=UTC) - report.last_sync)
        typer.echo(f"Last sync: {report.last_sync.isoformat()} ({ago})")
    typer.echo(f"Tracked calendars: {len(report.tracked_calendars)}")
    for cid in report.tracked_calendars:
        typer.echo(f"  - {cid}")
    raise typer.Exit(code=0)


@app.command(help="Clear all sync cursors so the next run is a full sync.")
def reset(
    ctx: typer.Context,
    config: Path | None = ConfigOption,
    purge: bool = typer.Option(
        False, "--purge", help="Also delete every event in the mirrored local calendars."
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Proceed without interactive confirmation."),
    verbose: bool = VerboseOption,
) -> None:
    config, _, verbose = _with_group_options(ctx, config, None, verbose)
    cfg = _load(config, _cli_overrides_from_args(dry_run=None, verbose=verbose))
    if purge and not yes:
        typer.confirm("Delete ALL events in the mirrored local calendars?", abort=True)

    orch = Orchestrator(cfg)
    try:
        deleted = orch.reset(purge=purge)
    except GCalSyncError as e:
        _fail(e)
    finally:
        orch.close()

    typer.echo("Sync state cleared; the next run performs a full sync.")
    if purge:
        typer.echo(f"Deleted {deleted} local events.")
    raise typer.Exit(code=0)


@app.command(help="Authorize Google Calendar access (opens a browser once).")
def setup(
    ctx: typer.Context,
    config: Path | None = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    config, _, verbose = _with_group_options(ctx, config, None, verbose)
    cfg = _load(config, _cli_overrides_from_args(dry_run=None, verbose=verbose))
    try:
        path = run_setup(cfg.google)
    except CredentialError as e:
        typer.echo(f"error: {e}", err=True)
        typer.echo(
            "hint: download an OAuth client (Desktop app) JSON and set google.credentials_file "
            "or GOOGLE_CREDENTIALS_FILE.",
            err=True,
        )
        raise typer.Exit(code=EXIT_FATAL) from e
    typer.echo(f"Google authorization saved to {path}")
    raise typer.Exit(code=0)


@app.command(name="help", help="Show this message.")
def help_(ctx: typer.Context) -> None:
    parent = ctx.parent or ctx
    typer.echo(parent.get_help())
    raise typer.Exit(code=0)


if __name__ == "__main__":  # pragma: no cover
    app()
