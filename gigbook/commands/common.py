"""Shared command helpers."""

from __future__ import annotations

import json
from typing import Any, Dict, NoReturn, Optional

import typer

from gigbook.core.api import GoogleCalendarAPI
from gigbook.core.auth import TokenError, TokenGuardian
from gigbook.core.classify import synonyms_from_config
from gigbook.core.config import ConfigError, resolve_google_client, resolve_storage_path
from gigbook.core.oauth import GoogleOAuthClient
from gigbook.core.state import CLIState
from gigbook.core.store import IncomeLedger, JsonCredentialStore, SettingsStore
from gigbook.core.sync import ApiFactory, CalendarSync


def get_state(ctx: typer.Context) -> CLIState:
    """Extract validated CLI state from Typer context."""
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=2)
    return state


def print_json_payload(state: CLIState, payload: Any) -> None:
    """Print JSON payload with plain-mode fallback for piping."""
    if state.plain_output:
        typer.echo(json.dumps(payload, separators=(",", ":"), ensure_ascii=False))
        return
    state.console.print_json(data=payload, ensure_ascii=False)


def fail(state: CLIState, message: str, requires_reconnect: bool = False, code: int = 1) -> NoReturn:
    """Report an error in the active output mode and exit."""
    if state.json_output:
        print_json_payload(
            state,
            {"status": "error", "message": message, "requiresReconnect": requires_reconnect},
        )
    elif state.plain_output:
        typer.echo("status\terror")
        typer.echo(f"message\t{message}")
        if requires_reconnect:
            typer.echo("action\treconnect")
    else:
        state.console.print(f"[red]{message}[/red]")
        if requires_reconnect:
            state.console.print("Run `gigbook connect` to reconnect Google Calendar.")
    raise typer.Exit(code=code)


def fail_token(state: CLIState, exc: TokenError) -> NoReturn:
    if exc.requires_reconnect:
        fail(state, f"Please reconnect Google Calendar: {exc}", requires_reconnect=True)
    fail(state, f"Sync failed, try again later: {exc}")


def credential_store(state: CLIState) -> JsonCredentialStore:
    return JsonCredentialStore(resolve_storage_path(state.config, "credentials_file"))


def settings_store(state: CLIState) -> SettingsStore:
    return SettingsStore(resolve_storage_path(state.config, "settings_file"))


def income_ledger(state: CLIState) -> IncomeLedger:
    return IncomeLedger(resolve_storage_path(state.config, "ledger_file"))


def oauth_client(state: CLIState) -> GoogleOAuthClient:
    """Build the OAuth client, exiting with code 2 on missing client config."""
    google_cfg = state.config.get("google", {})
    api_cfg = state.config.get("api", {})
    try:
        client_id, client_secret = resolve_google_client(state.config)
    except ConfigError as exc:
        fail(state, f"Config error: {exc}", code=2)
    kwargs: Dict[str, Any] = {"timeout_seconds": int(api_cfg.get("timeout_seconds", 30))}
    if google_cfg.get("token_uri"):
        kwargs["token_uri"] = str(google_cfg["token_uri"])
    if google_cfg.get("auth_uri"):
        kwargs["auth_uri"] = str(google_cfg["auth_uri"])
    return GoogleOAuthClient(client_id, client_secret, **kwargs)


def token_guardian(state: CLIState, endpoint: Optional[GoogleOAuthClient] = None) -> TokenGuardian:
    return TokenGuardian(store=credential_store(state), endpoint=endpoint or oauth_client(state))


def api_factory(state: CLIState) -> ApiFactory:
    api_cfg = state.config.get("api", {})

    def _build(token: str) -> GoogleCalendarAPI:
        return GoogleCalendarAPI(
            token=token,
            rate_limit_delay=float(api_cfg.get("rate_limit_delay", 0.0)),
            max_retries=int(api_cfg.get("max_retries", 3)),
            timeout_seconds=int(api_cfg.get("timeout_seconds", 30)),
        )

    return _build


def calendar_sync(state: CLIState) -> CalendarSync:
    """Wire the import pipeline from configuration."""
    classification_cfg = state.config.get("classification", {})
    return CalendarSync(
        guardian=token_guardian(state),
        settings_store=settings_store(state),
        ledger=income_ledger(state),
        api_factory=api_factory(state),
        threshold=float(classification_cfg.get("work_confidence_threshold", 0.7)),
        synonyms=synonyms_from_config(state.config),
    )
