from __future__ import annotations

from datetime import timedelta
from typing import List

import pytest

from gigbook.core.api import APIError, AuthorizationError
from gigbook.core.auth import NotConnected, RefreshFailed, RefreshUnavailable, TokenGuardian
from gigbook.core.models import OAuthCredential, TokenGrant
from gigbook.core.oauth import TokenEndpointError


def _guardian(store, endpoint, clock) -> TokenGuardian:
    return TokenGuardian(store=store, endpoint=endpoint, clock=clock)


def test_valid_token_returned_without_refresh_or_write(fake_store, fake_endpoint, clock, valid_credential) -> None:
    store = fake_store(valid_credential)
    endpoint = fake_endpoint()
    guardian = _guardian(store, endpoint, clock)

    assert guardian.get_valid_access_token("u1") == "AT1"
    assert endpoint.calls == []
    assert store.writes == []


def test_token_inside_buffer_is_refreshed(fake_store, fake_endpoint, clock, stale_credential) -> None:
    store = fake_store(stale_credential)
    new_expiry = clock() + timedelta(hours=1)
    endpoint = fake_endpoint(TokenGrant(access_token="AT2", expires_at=new_expiry))
    guardian = _guardian(store, endpoint, clock)

    assert guardian.get_valid_access_token("u1") == "AT2"
    assert endpoint.calls == ["RT1"]
    assert store.writes == [{"access_token": "AT2", "access_token_expires_at": new_expiry}]
    # Refresh token is kept when the provider does not rotate it.
    assert store.credential.refresh_token == "RT1"


def test_buffer_edge_counts_as_stale(fake_store, fake_endpoint, clock, valid_credential) -> None:
    credential = OAuthCredential(
        account_id="acct-1",
        access_token="AT1",
        refresh_token="RT1",
        access_token_expires_at=clock() + timedelta(minutes=5),
    )
    guardian = _guardian(fake_store(credential), fake_endpoint(), clock)
    assert guardian.needs_refresh(credential)
    assert not guardian.needs_refresh(valid_credential)


def test_missing_expiry_forces_refresh(fake_store, fake_endpoint, clock) -> None:
    credential = OAuthCredential(account_id="acct-1", access_token="AT1", refresh_token="RT1")
    store = fake_store(credential)
    endpoint = fake_endpoint(TokenGrant(access_token="AT2"))
    guardian = _guardian(store, endpoint, clock)

    assert guardian.get_valid_access_token("u1") == "AT2"
    # No expires_in in the grant: default one-hour lifetime.
    assert store.credential.access_token_expires_at == clock() + timedelta(hours=1)


def test_missing_access_token_with_refresh_token_refreshes(fake_store, fake_endpoint, clock) -> None:
    credential = OAuthCredential(account_id="acct-1", refresh_token="RT1")
    guardian = _guardian(fake_store(credential), fake_endpoint(TokenGrant(access_token="AT2")), clock)
    assert guardian.get_valid_access_token("u1") == "AT2"


def test_rotated_refresh_token_is_persisted(fake_store, fake_endpoint, clock, stale_credential) -> None:
    store = fake_store(stale_credential)
    endpoint = fake_endpoint(TokenGrant(access_token="AT2", refresh_token="RT2"))
    guardian = _guardian(store, endpoint, clock)

    guardian.get_valid_access_token("u1")
    assert store.writes[0]["refresh_token"] == "RT2"
    assert store.credential.refresh_token == "RT2"


def test_no_credential_raises_not_connected(fake_store, fake_endpoint, clock) -> None:
    guardian = _guardian(fake_store(None), fake_endpoint(), clock)
    with pytest.raises(NotConnected) as exc_info:
        guardian.get_valid_access_token("u1")
    assert exc_info.value.requires_reconnect is True


def test_empty_credential_raises_not_connected(fake_store, fake_endpoint, clock) -> None:
    guardian = _guardian(fake_store(OAuthCredential(account_id="acct-1")), fake_endpoint(), clock)
    with pytest.raises(NotConnected):
        guardian.get_valid_access_token("u1")


def test_stale_token_without_refresh_token_is_unavailable(fake_store, fake_endpoint, clock) -> None:
    credential = OAuthCredential(
        account_id="acct-1",
        access_token="AT1",
        access_token_expires_at=clock() - timedelta(minutes=1),
    )
    endpoint = fake_endpoint()
    guardian = _guardian(fake_store(credential), endpoint, clock)

    with pytest.raises(RefreshUnavailable) as exc_info:
        guardian.get_valid_access_token("u1")
    assert exc_info.value.requires_reconnect is True
    assert endpoint.calls == []


def test_revoked_refresh_token_requires_reconnect(fake_store, fake_endpoint, clock, stale_credential) -> None:
    store = fake_store(stale_credential)
    endpoint = fake_endpoint(TokenEndpointError("invalid_grant", "Token has been expired or revoked.", 400))
    guardian = _guardian(store, endpoint, clock)

    with pytest.raises(RefreshFailed) as exc_info:
        guardian.get_valid_access_token("u1")
    assert exc_info.value.requires_reconnect is True
    assert store.writes == []


def test_transient_refresh_failure_does_not_require_reconnect(
    fake_store, fake_endpoint, clock, stale_credential
) -> None:
    store = fake_store(stale_credential)
    guardian = _guardian(store, fake_endpoint(TokenEndpointError("server_error", "boom", 503)), clock)

    with pytest.raises(RefreshFailed) as exc_info:
        guardian.get_valid_access_token("u1")
    assert exc_info.value.requires_reconnect is False
    assert store.writes == []


def test_grant_without_access_token_fails(fake_store, fake_endpoint, clock, stale_credential) -> None:
    store = fake_store(stale_credential)
    guardian = _guardian(store, fake_endpoint(TokenGrant(access_token=None)), clock)

    with pytest.raises(RefreshFailed):
        guardian.get_valid_access_token("u1")
    assert store.writes == []


def test_with_valid_token_retries_once_after_authorization_error(
    fake_store, fake_endpoint, clock, valid_credential
) -> None:
    store = fake_store(valid_credential)
    endpoint = fake_endpoint(TokenGrant(access_token="AT2", expires_at=clock() + timedelta(hours=1)))
    guardian = _guardian(store, endpoint, clock)
    seen: List[str] = []

    def operation(token: str) -> str:
        seen.append(token)
        if token == "AT1":
            raise AuthorizationError(401)
        return "ok"

    assert guardian.with_valid_token("u1", operation) == "ok"
    assert seen == ["AT1", "AT2"]
    assert endpoint.calls == ["RT1"]


def test_with_valid_token_second_authorization_error_propagates(
    fake_store, fake_endpoint, clock, valid_credential
) -> None:
    endpoint = fake_endpoint(TokenGrant(access_token="AT2"))
    guardian = _guardian(fake_store(valid_credential), endpoint, clock)
    attempts: List[str] = []

    def operation(token: str) -> str:
        attempts.append(token)
        raise AuthorizationError(403)

    with pytest.raises(AuthorizationError):
        guardian.with_valid_token("u1", operation)
    assert attempts == ["AT1", "AT2"]
    assert len(endpoint.calls) == 1


def test_with_valid_token_does_not_retry_other_errors(fake_store, fake_endpoint, clock, valid_credential) -> None:
    endpoint = fake_endpoint()
    guardian = _guardian(fake_store(valid_credential), endpoint, clock)
    attempts: List[str] = []

    def operation(token: str) -> str:
        attempts.append(token)
        raise APIError("HTTP 404")

    with pytest.raises(APIError):
        guardian.with_valid_token("u1", operation)
    assert attempts == ["AT1"]
    assert endpoint.calls == []


def test_force_refresh_rereads_store(fake_store, fake_endpoint, clock, valid_credential) -> None:
    store = fake_store(valid_credential)
    endpoint = fake_endpoint(TokenGrant(access_token="AT3"))
    guardian = _guardian(store, endpoint, clock)

    def operation(token: str) -> str:
        if token == "AT1":
            # Another process rotated the refresh token meanwhile.
            store.credential = OAuthCredential(
                account_id="acct-1",
                access_token="AT2",
                refresh_token="RT-new",
                access_token_expires_at=clock() + timedelta(hours=1),
            )
            raise AuthorizationError(401)
        return token

    assert guardian.with_valid_token("u1", operation) == "AT3"
    assert endpoint.calls == ["RT-new"]
    assert store.reads == 2
