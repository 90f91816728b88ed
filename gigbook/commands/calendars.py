"""Calendar listing command."""

from __future__ import annotations

import typer
from rich.table import Table

from gigbook.commands.common import (
    api_factory,
    fail,
    fail_token,
    get_state,
    print_json_payload,
    settings_store,
    token_guardian,
)
from gigbook.core.api import APIError
from gigbook.core.auth import TokenError
from gigbook.core.config import ConfigError
from gigbook.core.store import StoreError
from gigbook.exporters.json_export import calendars_payload


def calendars_command(ctx: typer.Context) -> None:
    """List calendars the connected account can read."""
    state = get_state(ctx)
    guardian = token_guardian(state)
    build_api = api_factory(state)

    try:
        status_ctx = state.spinner("Fetching calendars...")
        with status_ctx:
            calendars = guardian.with_valid_token(state.user_id, lambda token: build_api(token).list_calendars())
    except TokenError as exc:
        fail_token(state, exc)
    except APIError as exc:
        fail(state, f"Failed to fetch calendars: {exc}")
    except StoreError as exc:
        fail(state, f"Storage error: {exc}")

    try:
        selected = set(settings_store(state).load(state.user_id).selected_calendar_ids)
    except (ConfigError, StoreError) as exc:
        fail(state, f"Invalid calendar settings: {exc}", code=2)

    if state.json_output:
        print_json_payload(state, calendars_payload(calendars))
        return

    if state.plain_output:
        typer.echo("id\tsummary\tprimary\trole\tselected")
        for cal in calendars:
            is_selected = cal.id in selected or (cal.primary and "primary" in selected)
            typer.echo(
                "\t".join(
                    [cal.id, cal.summary, str(cal.primary).lower(), cal.access_role, str(is_selected).lower()]
                )
            )
        return

    table = Table(title=f"Calendars ({len(calendars)})")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Primary")
    table.add_column("Role")
    table.add_column("Synced")
    for cal in calendars:
        is_selected = cal.id in selected or (cal.primary and "primary" in selected)
        table.add_row(cal.id, cal.summary, "yes" if cal.primary else "", cal.access_role, "yes" if is_selected else "")
    state.console.print(table)
