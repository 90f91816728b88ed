"""Per-user calendar settings commands."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import typer

from gigbook.commands.common import fail, get_state, print_json_payload, settings_store
from gigbook.core.config import CalendarSettings, ConfigError
from gigbook.core.state import CLIState
from gigbook.core.store import StoreError
from gigbook.utils.parsing import split_keywords

app = typer.Typer(help="View or change calendar sync settings")


def settings_summary(settings: CalendarSettings) -> Dict[str, Any]:
    return {
        "version": settings.version,
        "selectedCalendarIds": list(settings.selected_calendar_ids),
        "defaultCalendarId": settings.default_calendar_id,
        "autoSyncEnabled": settings.auto_sync_enabled,
        "lastAutoSync": settings.last_auto_sync,
        "customRules": settings.rules is not None,
    }


def _show(state: CLIState, settings: CalendarSettings) -> None:
    summary = settings_summary(settings)
    if state.json_output:
        print_json_payload(state, {"userId": state.user_id, **summary})
        return
    if state.plain_output:
        typer.echo(f"user_id\t{state.user_id}")
        typer.echo(f"calendars\t{','.join(settings.selected_calendar_ids)}")
        typer.echo(f"default_calendar\t{settings.default_calendar_id or '-'}")
        typer.echo(f"auto_sync\t{str(settings.auto_sync_enabled).lower()}")
        typer.echo(f"last_auto_sync\t{settings.last_auto_sync or '-'}")
        return
    state.console.print(f"[bold]Settings for {state.user_id}[/bold]")
    state.console.print(f"Calendars: {', '.join(settings.selected_calendar_ids)}")
    state.console.print(f"Default calendar: {settings.default_calendar_id or '-'}")
    state.console.print(f"Auto-sync: {'on' if settings.auto_sync_enabled else 'off'}")
    state.console.print(f"Last auto-sync: {settings.last_auto_sync or 'never'}")
    state.console.print(f"Rules: {'custom' if settings.rules is not None else 'defaults'}")


@app.command("show")
def show_command(ctx: typer.Context) -> None:
    """Show the current user's settings."""
    state = get_state(ctx)
    try:
        settings = settings_store(state).load(state.user_id)
    except (ConfigError, StoreError) as exc:
        fail(state, f"Invalid calendar settings: {exc}", code=2)
    _show(state, settings)


@app.command("set")
def set_command(
    ctx: typer.Context,
    calendar: Optional[List[str]] = typer.Option(
        None,
        "--calendar",
        "-c",
        help="Calendar id to sync (repeatable or comma-separated); replaces the selection",
    ),
    default_calendar: Optional[str] = typer.Option(None, help="Calendar used when creating events"),
    auto_sync: Optional[bool] = typer.Option(None, "--auto-sync/--no-auto-sync", help="Include in auto-sync runs"),
) -> None:
    """Update calendar selection and auto-sync."""
    state = get_state(ctx)
    changes: Dict[str, Any] = {}
    if calendar:
        calendar_ids = split_keywords(calendar)
        if not calendar_ids:
            fail(state, "At least one calendar id is required", code=2)
        changes["selected_calendar_ids"] = tuple(calendar_ids)
    if default_calendar is not None:
        changes["default_calendar_id"] = default_calendar.strip() or None
    if auto_sync is not None:
        changes["auto_sync_enabled"] = auto_sync
    if not changes:
        fail(state, "Nothing to change. Pass --calendar, --default-calendar or --auto-sync", code=2)

    try:
        settings = settings_store(state).update(state.user_id, **changes)
    except (ConfigError, StoreError) as exc:
        fail(state, f"Invalid calendar settings: {exc}", code=2)
    _show(state, settings)
