"""Calendar import commands."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from gigbook.commands.common import (
    calendar_sync,
    fail,
    fail_token,
    get_state,
    income_ledger,
    print_json_payload,
)
from gigbook.core.api import APIError, AuthorizationError
from gigbook.core.auth import TokenError
from gigbook.core.config import ConfigError
from gigbook.core.store import StoreError
from gigbook.core.sync import preview_rows
from gigbook.exporters.json_export import (
    auto_sync_payload,
    entries_payload,
    preview_payload,
    sync_result_payload,
    write_json,
)
from gigbook.utils.date_ranges import resolve_month, validate_month
from gigbook.utils.formatting import format_confidence, format_label


def _dry_run(ctx: typer.Context, year: int, month: int, output: Optional[Path]) -> None:
    state = get_state(ctx)
    pipeline = calendar_sync(state)
    try:
        status_ctx = state.spinner("Fetching calendar events...")
        with status_ctx:
            preview = pipeline.preview(state.user_id, year, month)
    except TokenError as exc:
        fail_token(state, exc)
    except AuthorizationError:
        fail(state, "Please reconnect Google Calendar: Token expired or revoked", requires_reconnect=True)
    except APIError as exc:
        fail(state, f"Failed to fetch events: {exc}")
    except (ConfigError, StoreError) as exc:
        fail(state, f"Storage error: {exc}", code=2)

    payload = preview_payload(preview)
    if output:
        write_json(output, payload)

    if state.json_output:
        print_json_payload(state, payload)
        return

    if state.plain_output:
        typer.echo("id\tdate\ttitle\tlabel\tconfidence\timport")
        for event, result in preview_rows(preview):
            typer.echo(
                "\t".join(
                    [
                        event.id,
                        event.start.date().isoformat(),
                        event.title,
                        format_label(result),
                        f"{result.confidence:.2f}",
                        str(event.id in preview.work_event_ids).lower(),
                    ]
                )
            )
        return

    table = Table(title=f"{year}-{month:02d}: {len(preview.events)} events, {len(preview.work_event_ids)} to import")
    table.add_column("Date")
    table.add_column("Title")
    table.add_column("Label")
    table.add_column("Confidence", justify="right")
    table.add_column("Rule")
    table.add_column("Import")
    for event, result in preview_rows(preview):
        table.add_row(
            event.start.date().isoformat(),
            event.title,
            format_label(result),
            format_confidence(result.confidence),
            result.matched_rule_id or "-",
            "yes" if event.id in preview.work_event_ids else "",
        )
    state.console.print(table)
    if output:
        state.console.print(f"Preview written to {output}")


def sync_command(
    ctx: typer.Context,
    month: Optional[str] = typer.Option(None, help="Month to import (YYYY-MM), defaults to current", callback=validate_month),
    dry_run: bool = typer.Option(False, "--dry-run", help="Classify and show events without importing"),
    output: Optional[Path] = typer.Option(None, help="Write the dry-run preview to a JSON file"),
) -> None:
    """Import a month of work events as draft income entries."""
    state = get_state(ctx)
    year, month_num = resolve_month(month)

    if dry_run:
        _dry_run(ctx, year, month_num, output)
        return

    pipeline = calendar_sync(state)
    try:
        status_ctx = state.spinner("Syncing calendar...")
        with status_ctx:
            result = pipeline.sync_user(state.user_id, year, month_num)
    except (ConfigError, StoreError) as exc:
        fail(state, f"Storage error: {exc}", code=2)

    if not result.ok:
        if result.requires_reconnect:
            fail(state, f"Please reconnect Google Calendar: {result.error}", requires_reconnect=True)
        fail(state, f"Sync failed, try again later: {result.error}")

    if state.json_output:
        print_json_payload(state, {"status": "success", **sync_result_payload(result)})
        return

    if state.plain_output:
        typer.echo("status\tsuccess")
        typer.echo(f"imported\t{result.imported}")
        typer.echo(f"total_events\t{result.total_events}")
        typer.echo(f"work_events\t{result.work_events}")
        return

    state.console.print(
        f"Imported {result.imported} new draft entries "
        f"({result.work_events} work events of {result.total_events} in {year}-{month_num:02d})"
    )


def auto_sync_command(
    ctx: typer.Context,
    month: Optional[str] = typer.Option(None, help="Month to import (YYYY-MM), defaults to current", callback=validate_month),
) -> None:
    """Sync every user with auto-sync enabled."""
    state = get_state(ctx)
    year, month_num = resolve_month(month)
    delay = float(state.config.get("sync", {}).get("inter_user_delay", 0.1))

    pipeline = calendar_sync(state)
    try:
        status_ctx = state.spinner("Running auto-sync...")
        with status_ctx:
            report = pipeline.auto_sync(year, month_num, delay=delay)
    except StoreError as exc:
        fail(state, f"Storage error: {exc}", code=2)

    if state.json_output:
        print_json_payload(state, auto_sync_payload(report))
        return

    if state.plain_output:
        typer.echo(f"processed\t{report.processed}")
        typer.echo(f"successful\t{report.successful}")
        typer.echo(f"failed\t{report.failed}")
        typer.echo(f"imported\t{report.total_imported}")
        for result in report.results:
            status = "ok" if result.ok else ("reconnect" if result.requires_reconnect else "error")
            typer.echo(f"{result.user_id}\t{status}\t{result.imported}\t{result.error or ''}")
        return

    if not report.processed:
        state.console.print("No users with auto-sync enabled")
        return

    table = Table(title=f"Auto-sync {year}-{month_num:02d}")
    table.add_column("User")
    table.add_column("Status")
    table.add_column("Events", justify="right")
    table.add_column("Imported", justify="right")
    table.add_column("Error")
    for result in report.results:
        if result.ok:
            status = "[green]ok[/green]"
        elif result.requires_reconnect:
            status = "[yellow]reconnect[/yellow]"
        else:
            status = "[red]error[/red]"
        table.add_row(result.user_id, status, str(result.total_events), str(result.imported), result.error or "")
    state.console.print(table)
    state.console.print(
        f"{report.successful}/{report.processed} users synced, {report.total_imported} entries imported"
    )


def entries_command(
    ctx: typer.Context,
    month: Optional[str] = typer.Option(None, help="Only entries dated in this month (YYYY-MM)", callback=validate_month),
) -> None:
    """List imported draft income entries."""
    state = get_state(ctx)
    try:
        entries = income_ledger(state).entries(state.user_id)
    except StoreError as exc:
        fail(state, f"Storage error: {exc}", code=2)

    if month:
        year, month_num = resolve_month(month)
        prefix = f"{year}-{month_num:02d}-"
        entries = [entry for entry in entries if entry.date.startswith(prefix)]
    entries.sort(key=lambda entry: entry.date)

    if state.json_output:
        print_json_payload(state, {"total": len(entries), "entries": entries_payload(entries)})
        return

    if state.plain_output:
        typer.echo("date\tdescription\tinvoice\tpayment\tevent_id")
        for entry in entries:
            typer.echo(
                "\t".join(
                    [entry.date, entry.description, entry.invoice_status, entry.payment_status, entry.calendar_event_id]
                )
            )
        return

    table = Table(title=f"Income entries ({len(entries)})")
    table.add_column("Date")
    table.add_column("Description")
    table.add_column("Invoice")
    table.add_column("Payment")
    for entry in entries:
        table.add_row(entry.date, entry.description, entry.invoice_status, entry.payment_status)
    state.console.print(table)
