"""Classification rule management commands."""

from __future__ import annotations

from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

import typer
from rich.table import Table

from gigbook.commands.common import fail, get_state, print_json_payload, settings_store
from gigbook.core.classify import rules_for_settings
from gigbook.core.config import CalendarSettings, ConfigError, rule_from_payload, rule_to_payload
from gigbook.core.constants import MATCH_SCOPE_ALIASES, MATCH_SCOPES, RULE_KINDS
from gigbook.core.models import ClassificationRule
from gigbook.core.state import CLIState
from gigbook.core.store import StoreError
from gigbook.utils.parsing import split_keywords

app = typer.Typer(help="Manage event classification rules")


def next_rule_id(rules: Sequence[ClassificationRule], kind: str, match_scope: str) -> str:
    """Return the first free ``<kind>-<scope>-<n>`` id."""
    prefix = f"{kind}-{match_scope.replace('_', '-')}-"
    taken = {rule.id for rule in rules}
    n = 1
    while f"{prefix}{n}" in taken:
        n += 1
    return f"{prefix}{n}"


def find_rule(rules: Sequence[ClassificationRule], rule_id: str) -> Optional[int]:
    for index, rule in enumerate(rules):
        if rule.id == rule_id:
            return index
    return None


def _load(state: CLIState) -> Tuple[CalendarSettings, List[ClassificationRule]]:
    try:
        settings = settings_store(state).load(state.user_id)
    except (ConfigError, StoreError) as exc:
        fail(state, f"Invalid calendar settings: {exc}", code=2)
    return settings, list(rules_for_settings(settings))


def _save(state: CLIState, settings: CalendarSettings, rules: Optional[List[ClassificationRule]]) -> None:
    try:
        settings_store(state).save(
            state.user_id,
            replace(settings, rules=tuple(rules) if rules is not None else None),
        )
    except StoreError as exc:
        fail(state, f"Storage error: {exc}", code=2)


def _print_rules(state: CLIState, rules: Sequence[ClassificationRule], customised: bool) -> None:
    if state.json_output:
        print_json_payload(
            state,
            {"customised": customised, "rules": [rule_to_payload(rule) for rule in rules]},
        )
        return

    if state.plain_output:
        typer.echo("position\tid\tkind\tscope\tenabled\tkeywords")
        for position, rule in enumerate(rules, start=1):
            typer.echo(
                "\t".join(
                    [
                        str(position),
                        rule.id,
                        rule.kind,
                        rule.match_scope,
                        str(rule.enabled).lower(),
                        ",".join(rule.keywords),
                    ]
                )
            )
        return

    title = "Classification rules" if customised else "Classification rules (defaults)"
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("ID")
    table.add_column("Kind")
    table.add_column("Scope")
    table.add_column("Enabled")
    table.add_column("Keywords")
    for position, rule in enumerate(rules, start=1):
        table.add_row(
            str(position),
            rule.id,
            rule.kind,
            rule.match_scope,
            "yes" if rule.enabled else "[dim]no[/dim]",
            ", ".join(rule.keywords),
        )
    state.console.print(table)


@app.command("list")
def list_command(ctx: typer.Context) -> None:
    """Show rules in evaluation order."""
    state = get_state(ctx)
    settings, rules = _load(state)
    _print_rules(state, rules, customised=settings.rules is not None)


@app.command("add")
def add_command(
    ctx: typer.Context,
    kind: str = typer.Option(..., help="Rule kind: work|personal"),
    keyword: List[str] = typer.Option(..., "--keyword", "-k", help="Keyword (repeatable or comma-separated)"),
    scope: str = typer.Option("title", help="Match scope: title|calendar_source"),
    position: Optional[int] = typer.Option(None, min=1, help="1-based position, appended when omitted"),
    disabled: bool = typer.Option(False, help="Add the rule disabled"),
) -> None:
    """Add a rule. Earlier rules win."""
    state = get_state(ctx)
    kind = kind.strip().lower()
    if kind not in RULE_KINDS:
        fail(state, f"Invalid kind '{kind}'. Use one of: {', '.join(RULE_KINDS)}", code=2)
    match_scope = MATCH_SCOPE_ALIASES.get(scope.strip().lower().replace("-", "_"))
    if match_scope is None:
        fail(state, f"Invalid scope '{scope}'. Use one of: {', '.join(MATCH_SCOPES)}", code=2)
    keywords = split_keywords(keyword)
    if not keywords:
        fail(state, "At least one keyword is required", code=2)

    settings, rules = _load(state)
    rule = rule_from_payload(
        {
            "id": next_rule_id(rules, kind, match_scope),
            "kind": kind,
            "match_scope": match_scope,
            "keywords": keywords,
            "enabled": not disabled,
        }
    )
    index = len(rules) if position is None else min(position - 1, len(rules))
    rules.insert(index, rule)
    _save(state, settings, rules)

    if state.json_output:
        print_json_payload(state, {"status": "success", "position": index + 1, "rule": rule_to_payload(rule)})
        return
    if state.plain_output:
        typer.echo("status\tsuccess")
        typer.echo(f"id\t{rule.id}")
        typer.echo(f"position\t{index + 1}")
        return
    state.console.print(f"Added rule {rule.id} at position {index + 1}")


@app.command("remove")
def remove_command(
    ctx: typer.Context,
    rule_id: str = typer.Argument(..., help="Rule id to remove"),
) -> None:
    """Remove a rule by id."""
    state = get_state(ctx)
    settings, rules = _load(state)
    index = find_rule(rules, rule_id)
    if index is None:
        fail(state, f"Rule not found: {rule_id}")
    removed = rules.pop(index)
    _save(state, settings, rules)

    if state.json_output:
        print_json_payload(state, {"status": "success", "removed": removed.id})
        return
    if state.plain_output:
        typer.echo("status\tsuccess")
        typer.echo(f"removed\t{removed.id}")
        return
    state.console.print(f"Removed rule {removed.id}")


@app.command("toggle")
def toggle_command(
    ctx: typer.Context,
    rule_id: str = typer.Argument(..., help="Rule id to enable or disable"),
) -> None:
    """Flip a rule between enabled and disabled."""
    state = get_state(ctx)
    settings, rules = _load(state)
    index = find_rule(rules, rule_id)
    if index is None:
        fail(state, f"Rule not found: {rule_id}")
    rules[index] = replace(rules[index], enabled=not rules[index].enabled)
    _save(state, settings, rules)

    enabled = rules[index].enabled
    if state.json_output:
        print_json_payload(state, {"status": "success", "id": rule_id, "enabled": enabled})
        return
    if state.plain_output:
        typer.echo("status\tsuccess")
        typer.echo(f"enabled\t{str(enabled).lower()}")
        return
    state.console.print(f"Rule {rule_id} {'enabled' if enabled else 'disabled'}")


@app.command("reset")
def reset_command(ctx: typer.Context) -> None:
    """Drop custom rules and go back to the built-in set."""
    state = get_state(ctx)
    settings, _ = _load(state)
    _save(state, settings, None)
    _, rules = _load(state)
    _print_rules(state, rules, customised=False)
