from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from typer.testing import CliRunner

from gigbook.core.models import CalendarEvent, OAuthCredential, TokenGrant
from gigbook.core.oauth import TokenEndpointError

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeCredentialStore:
    """In-memory credential store recording every write."""

    def __init__(self, credential: Optional[OAuthCredential] = None) -> None:
        self.credential = credential
        self.reads = 0
        self.writes: List[Dict[str, Any]] = []

    def read(self, user_id: str, provider_id: str) -> Optional[OAuthCredential]:
        self.reads += 1
        return self.credential

    def write(self, account_id: str, fields: Dict[str, Any]) -> None:
        assert self.credential is not None and account_id == self.credential.account_id
        self.writes.append(dict(fields))
        self.credential = replace(
            self.credential,
            access_token=fields.get("access_token", self.credential.access_token),
            refresh_token=fields.get("refresh_token", self.credential.refresh_token),
            access_token_expires_at=fields.get(
                "access_token_expires_at", self.credential.access_token_expires_at
            ),
        )


class FakeTokenEndpoint:
    """Returns queued grants or raises queued errors, recording refresh tokens used."""

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.calls: List[str] = []

    def refresh(self, refresh_token: str) -> TokenGrant:
        self.calls.append(refresh_token)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, TokenEndpointError):
            raise outcome
        return outcome


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture()
def valid_credential() -> OAuthCredential:
    return OAuthCredential(
        account_id="acct-1",
        access_token="AT1",
        refresh_token="RT1",
        access_token_expires_at=NOW + timedelta(hours=1),
    )


@pytest.fixture()
def stale_credential() -> OAuthCredential:
    return OAuthCredential(
        account_id="acct-1",
        access_token="AT1",
        refresh_token="RT1",
        access_token_expires_at=NOW + timedelta(minutes=3),
    )


def make_event(event_id: str, title: str, day: int = 5, calendar_id: str = "primary") -> CalendarEvent:
    start = datetime(2026, 3, day, 18, 0, tzinfo=timezone.utc)
    return CalendarEvent(
        id=event_id,
        title=title,
        start=start,
        end=start + timedelta(hours=2),
        calendar_id=calendar_id,
    )


@pytest.fixture()
def sample_events() -> List[CalendarEvent]:
    return [
        make_event("e2", "חתונה - כהן", day=12),
        make_event("e1", "רופא שיניים", day=3),
        make_event("e3", "Coffee with Dana", day=20),
    ]


@pytest.fixture()
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point storage and config at tmp_path and provide OAuth client credentials."""
    monkeypatch.setenv("GIGBOOK_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("GIGBOOK_CONFIG_FILE", str(tmp_path / "config.toml"))
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "client-id")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "client-secret")
    for key in ("GIGBOOK_USER", "GIGBOOK_CREDENTIALS_FILE", "GIGBOOK_SETTINGS_FILE", "GIGBOOK_LEDGER_FILE"):
        monkeypatch.delenv(key, raising=False)
    return tmp_path / "data"


@pytest.fixture()
def write_temp_json(tmp_path: Path):
    def _write(name: str, payload: Any) -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def write_temp_toml(tmp_path: Path):
    def _write(name: str, content: str) -> Path:
        path = tmp_path / name
        path.write_text(content.strip() + "\n", encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def fake_store():
    return FakeCredentialStore


@pytest.fixture()
def fake_endpoint():
    return FakeTokenEndpoint


@pytest.fixture()
def event_factory():
    return make_event
