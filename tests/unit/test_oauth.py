from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from gigbook.core.oauth import GoogleOAuthClient, TokenEndpointError


class DummyResponse:
    def __init__(self, status_code: int, payload: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def _client(clock) -> GoogleOAuthClient:
    return GoogleOAuthClient("cid", "secret", token_uri="https://oauth.test/token", clock=clock)


def _patch_post(monkeypatch: pytest.MonkeyPatch, response: Any) -> List[Dict[str, Any]]:
    calls: List[Dict[str, Any]] = []

    def fake_post(url: str, **kwargs: Any) -> DummyResponse:
        calls.append({"url": url, **kwargs})
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr("gigbook.core.oauth.requests.post", fake_post)
    return calls


def test_create_auth_url_requests_offline_access(clock) -> None:
    url = _client(clock).create_auth_url("http://localhost/cb", state="u1")
    query = parse_qs(urlparse(url).query)
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["state"] == ["u1"]
    assert "calendar" in query["scope"][0]


def test_refresh_success_computes_expiry(monkeypatch: pytest.MonkeyPatch, clock) -> None:
    calls = _patch_post(monkeypatch, DummyResponse(200, {"access_token": "AT2", "expires_in": 3599}))
    grant = _client(clock).refresh("RT1")

    assert grant.access_token == "AT2"
    assert grant.expires_at == clock() + timedelta(seconds=3599)
    assert grant.refresh_token is None
    assert calls[0]["url"] == "https://oauth.test/token"
    assert calls[0]["data"]["grant_type"] == "refresh_token"
    assert calls[0]["data"]["refresh_token"] == "RT1"


def test_exchange_code_returns_refresh_token(monkeypatch: pytest.MonkeyPatch, clock) -> None:
    calls = _patch_post(
        monkeypatch,
        DummyResponse(200, {"access_token": "AT1", "refresh_token": "RT1", "expires_in": 3600, "scope": "s"}),
    )
    grant = _client(clock).exchange_code("code-1", "http://localhost/cb")
    assert grant.refresh_token == "RT1"
    assert calls[0]["data"]["grant_type"] == "authorization_code"


def test_invalid_grant_is_revocation(monkeypatch: pytest.MonkeyPatch, clock) -> None:
    _patch_post(
        monkeypatch,
        DummyResponse(400, {"error": "invalid_grant", "error_description": "Token has been expired or revoked."}),
    )
    with pytest.raises(TokenEndpointError) as exc_info:
        _client(clock).refresh("RT1")
    assert exc_info.value.code == "invalid_grant"
    assert exc_info.value.is_revocation


def test_server_error_is_not_revocation(monkeypatch: pytest.MonkeyPatch, clock) -> None:
    _patch_post(monkeypatch, DummyResponse(503, None, text="unavailable"))
    with pytest.raises(TokenEndpointError) as exc_info:
        _client(clock).refresh("RT1")
    assert exc_info.value.code == "server_error"
    assert not exc_info.value.is_revocation


def test_network_error_maps_to_endpoint_error(monkeypatch: pytest.MonkeyPatch, clock) -> None:
    _patch_post(monkeypatch, requests.ConnectionError("down"))
    with pytest.raises(TokenEndpointError) as exc_info:
        _client(clock).refresh("RT1")
    assert exc_info.value.code == "network_error"


def test_non_json_success_body_is_invalid(monkeypatch: pytest.MonkeyPatch, clock) -> None:
    _patch_post(monkeypatch, DummyResponse(200, None, text="<html>"))
    with pytest.raises(TokenEndpointError) as exc_info:
        _client(clock).refresh("RT1")
    assert exc_info.value.code == "invalid_response"
