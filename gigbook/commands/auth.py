"""Google account connection commands."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import typer

from gigbook.commands.common import (
    credential_store,
    fail,
    get_state,
    oauth_client,
    print_json_payload,
)
from gigbook.core.config import ConfigError, update_config_file
from gigbook.core.constants import PROVIDER_GOOGLE
from gigbook.core.oauth import TokenEndpointError
from gigbook.core.state import CLIState
from gigbook.core.store import StoreError, format_timestamp
from gigbook.utils.formatting import format_expiry


def _save_client(state: CLIState, client_id: Optional[str], client_secret: Optional[str]) -> None:
    updates: Dict[str, Any] = {}
    if client_id:
        updates["client_id"] = client_id
    if client_secret:
        updates["client_secret"] = client_secret
    if not updates:
        return
    try:
        path = update_config_file({"google": updates}, state.config_path)
    except ConfigError as exc:
        fail(state, f"Config error: {exc}", code=2)
    state.config.setdefault("google", {}).update(updates)
    if not state.json_output and not state.plain_output:
        state.console.print(f"Saved Google OAuth client to {path}")


def connect_command(
    ctx: typer.Context,
    code: Optional[str] = typer.Option(None, help="Authorization code from the Google consent redirect"),
    redirect_uri: Optional[str] = typer.Option(None, help="Redirect URI registered for the OAuth client"),
    client_id: Optional[str] = typer.Option(None, help="Save this OAuth client id to the config file"),
    client_secret: Optional[str] = typer.Option(None, help="Save this OAuth client secret to the config file"),
) -> None:
    """Print the consent URL, or exchange a code and store the credential."""
    state = get_state(ctx)
    _save_client(state, client_id, client_secret)
    client = oauth_client(state)
    redirect = redirect_uri or str(state.config.get("google", {}).get("redirect_uri") or "")
    if not redirect:
        fail(state, "Config error: google.redirect_uri is not set", code=2)

    if not code:
        url = client.create_auth_url(redirect_uri=redirect, state=state.user_id)
        if state.json_output:
            print_json_payload(state, {"status": "pending", "authUrl": url})
        elif state.plain_output:
            typer.echo(f"auth_url\t{url}")
        else:
            state.console.print("Open this URL, approve access, then run `gigbook connect --code <code>`:")
            state.console.print(url, soft_wrap=True)
        return

    try:
        status_ctx = state.spinner("Connecting Google Calendar...")
        with status_ctx:
            grant = client.exchange_code(code, redirect)
    except TokenEndpointError as exc:
        fail(state, f"Connect failed: {exc}")

    if not grant.access_token:
        fail(state, "Connect failed: Google returned no access token")

    try:
        account_id = credential_store(state).link(state.user_id, PROVIDER_GOOGLE, grant)
    except StoreError as exc:
        fail(state, f"Storage error: {exc}", code=2)
    payload = {
        "status": "success",
        "connected": True,
        "userId": state.user_id,
        "accountId": account_id,
        "hasRefreshToken": bool(grant.refresh_token),
    }

    if state.json_output:
        print_json_payload(state, payload)
        return
    if state.plain_output:
        typer.echo("status\tsuccess")
        typer.echo(f"user_id\t{state.user_id}")
        typer.echo(f"account_id\t{account_id}")
        return

    state.console.print(f"Google Calendar connected for {state.user_id}")
    if not grant.refresh_token:
        state.console.print("[yellow]No refresh token issued; access will stop when the token expires.[/yellow]")


def disconnect_command(ctx: typer.Context) -> None:
    """Remove the stored Google credential."""
    state = get_state(ctx)
    try:
        removed = credential_store(state).unlink(state.user_id, PROVIDER_GOOGLE)
    except StoreError as exc:
        fail(state, f"Storage error: {exc}", code=2)
    if not removed:
        fail(state, "No Google account found")

    if state.json_output:
        print_json_payload(state, {"status": "success", "disconnected": True})
        return
    if state.plain_output:
        typer.echo("status\tsuccess")
        typer.echo("disconnected\ttrue")
        return
    state.console.print("Google Calendar disconnected")


def status_command(ctx: typer.Context) -> None:
    """Show connection state without refreshing anything."""
    state = get_state(ctx)
    try:
        credential = credential_store(state).read(state.user_id, PROVIDER_GOOGLE)
    except StoreError as exc:
        fail(state, f"Storage error: {exc}", code=2)
    now = datetime.now(timezone.utc)

    connected = credential is not None and bool(credential.access_token or credential.refresh_token)
    expires_at = credential.access_token_expires_at if credential else None
    payload = {
        "userId": state.user_id,
        "connected": connected,
        "hasAccessToken": bool(credential and credential.access_token),
        "hasRefreshToken": bool(credential and credential.refresh_token),
        "accessTokenExpiresAt": format_timestamp(expires_at),
        "reconnectRequired": not connected or not (credential and credential.refresh_token),
    }

    if state.json_output:
        print_json_payload(state, payload)
        return

    if state.plain_output:
        typer.echo(f"user_id\t{state.user_id}")
        typer.echo(f"connected\t{str(connected).lower()}")
        typer.echo(f"refresh_token\t{str(payload['hasRefreshToken']).lower()}")
        typer.echo(f"expires_at\t{payload['accessTokenExpiresAt'] or '-'}")
        return

    if not connected:
        state.console.print(f"Google Calendar not connected for {state.user_id}")
        return
    state.console.print(f"Google Calendar connected for {state.user_id}")
    state.console.print(f"Access token expires: {format_expiry(expires_at, now)}")
    if not payload["hasRefreshToken"]:
        state.console.print("[yellow]No refresh token stored; reconnect to enable automatic refresh.[/yellow]")
