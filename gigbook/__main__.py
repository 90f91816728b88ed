"""Entry point for gigbook."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from gigbook import __version__
from gigbook.commands import rules as rules_commands
from gigbook.commands import settings as settings_commands
from gigbook.commands.auth import connect_command, disconnect_command, status_command
from gigbook.commands.calendars import calendars_command
from gigbook.commands.classify import classify_command
from gigbook.commands.sync import auto_sync_command, entries_command, sync_command
from gigbook.core.config import ConfigError, default_config_path, load_config, resolve_user_id
from gigbook.core.state import CLIState

app = typer.Typer(
    add_completion=False,
    help="Google Calendar to income-ledger sync",
    invoke_without_command=True,
)


def configure_logging(verbose: bool, quiet: bool) -> None:
    """Route the package logger through rich on stderr."""
    logger = logging.getLogger("gigbook")
    logger.handlers.clear()
    handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=False,
        rich_tracebacks=verbose,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    if verbose:
        logger.setLevel(logging.INFO)
    elif quiet:
        logger.setLevel(logging.ERROR)
    else:
        logger.setLevel(logging.WARNING)
    logger.propagate = False


@app.callback()
def main_callback(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output JSON where available"),
    plain_output: bool = typer.Option(
        False,
        "--plain",
        help="Output plain text (no rich formatting/tables)",
    ),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to config file"),
    user: Optional[str] = typer.Option(None, "--user", help="Local user id to act for"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Quiet output"),
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
) -> None:
    """Initialize global CLI state."""
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)

    if json_output and plain_output:
        typer.echo("Options --json and --plain are mutually exclusive.")
        raise typer.Exit(code=2)

    cfg_path = (config or default_config_path()).expanduser().resolve()
    try:
        cfg = load_config(cfg_path)
    except ConfigError as exc:
        typer.echo(f"Config error: {exc}")
        raise typer.Exit(code=2)

    configure_logging(verbose=verbose, quiet=quiet)
    console = Console(
        quiet=quiet,
        no_color=plain_output,
        log_time=False,
        log_path=False,
    )
    ctx.obj = CLIState(
        json_output=(json_output and not plain_output),
        plain_output=plain_output,
        verbose=verbose,
        quiet=quiet,
        config_path=cfg_path,
        config=cfg,
        console=console,
        user_id=resolve_user_id(cfg, user),
    )

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(code=0)


# Top-level commands
app.command("connect")(connect_command)
app.command("disconnect")(disconnect_command)
app.command("status")(status_command)
app.command("calendars")(calendars_command)
app.command("sync")(sync_command)
app.command("auto-sync")(auto_sync_command)
app.command("entries")(entries_command)
app.command("classify")(classify_command)
app.add_typer(rules_commands.app, name="rules")
app.add_typer(settings_commands.app, name="settings")


def main() -> None:
    """Console script entrypoint."""
    app()


if __name__ == "__main__":
    main()
