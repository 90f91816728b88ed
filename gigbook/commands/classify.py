"""Offline classification command."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.table import Table

from gigbook.commands.common import fail, get_state, print_json_payload, settings_store
from gigbook.core.classify import classify, events_from_payload, filter_work, rules_for_settings, synonyms_from_config
from gigbook.core.config import ConfigError
from gigbook.core.store import StoreError
from gigbook.exporters.json_export import write_json
from gigbook.utils.formatting import format_confidence, format_label
from gigbook.utils.parsing import load_records


def classify_command(
    ctx: typer.Context,
    file: Optional[Path] = typer.Argument(None, exists=True, readable=True, help="JSON/YAML file of events"),
    stdin: bool = typer.Option(False, "--stdin", help="Read events from stdin"),
    threshold: Optional[float] = typer.Option(None, min=0.0, max=1.0, help="Work confidence threshold"),
    output: Optional[Path] = typer.Option(None, help="Write classification results to a JSON file"),
) -> None:
    """Classify events from a file or stdin using the user's rules."""
    state = get_state(ctx)
    if not file and not stdin:
        fail(state, "Provide an events FILE or --stdin", code=2)

    try:
        records = load_records(file, stdin, sys.stdin.read() if stdin else "")
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        fail(state, f"Could not parse events: {exc}", code=2)

    try:
        rules = rules_for_settings(settings_store(state).load(state.user_id))
    except (ConfigError, StoreError) as exc:
        fail(state, f"Invalid calendar settings: {exc}", code=2)

    if threshold is None:
        threshold = float(state.config.get("classification", {}).get("work_confidence_threshold", 0.7))

    events = events_from_payload(records)
    results = classify(events, rules, synonyms_from_config(state.config))
    work_ids = filter_work(results, threshold)
    payload = {
        "threshold": threshold,
        "total": len(results),
        "work": len(work_ids),
        "results": [result.to_dict() for result in results],
    }
    if output:
        write_json(output, payload)

    if state.json_output:
        print_json_payload(state, payload)
        return

    if state.plain_output:
        typer.echo("id\ttitle\tlabel\tconfidence\trule\tkeyword\twork")
        for event, result in zip(events, results):
            typer.echo(
                "\t".join(
                    [
                        event.id,
                        event.title,
                        format_label(result),
                        f"{result.confidence:.2f}",
                        result.matched_rule_id or "-",
                        result.matched_keyword or "-",
                        str(event.id in work_ids).lower(),
                    ]
                )
            )
        return

    table = Table(title=f"Classified {len(results)} events ({len(work_ids)} work)")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Label")
    table.add_column("Confidence", justify="right")
    table.add_column("Rule")
    table.add_column("Keyword")
    for event, result in zip(events, results):
        table.add_row(
            event.id,
            event.title,
            format_label(result),
            format_confidence(result.confidence),
            result.matched_rule_id or "-",
            result.matched_keyword or "-",
        )
    state.console.print(table)
