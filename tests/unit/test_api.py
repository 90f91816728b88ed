from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

import pytest
import requests

from gigbook.core.api import APIError, AuthorizationError, GoogleCalendarAPI, parse_event
from gigbook.core.constants import UNTITLED_EVENT


class _MockResponse:
    def __init__(
        self,
        status_code: int = 200,
        payload: Dict[str, Any] | None = None,
        text: str = '{"ok":true}',
    ) -> None:
        self.status_code = status_code
        self._payload = payload if payload is not None else {"ok": True}
        self.text = text

    def json(self) -> Dict[str, Any]:
        return self._payload


def _item(event_id: str, summary: str | None, start: str) -> Dict[str, Any]:
    item: Dict[str, Any] = {"id": event_id, "start": {"dateTime": start}, "end": {"dateTime": start}}
    if summary is not None:
        item["summary"] = summary
    return item


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("gigbook.core.api.time.sleep", lambda _: None)


def test_api_retries_on_server_error(monkeypatch) -> None:
    attempts = {"count": 0}

    def fake_request(*args, **kwargs):  # type: ignore[no-untyped-def]
        attempts["count"] += 1
        if attempts["count"] == 1:
            return _MockResponse(status_code=503, text="temporary")
        return _MockResponse(payload={"ok": True})

    monkeypatch.setattr("gigbook.core.api.requests.request", fake_request)
    assert GoogleCalendarAPI(token="t").get("/status")["ok"] is True
    assert attempts["count"] == 2


def test_api_raises_after_max_retries(monkeypatch) -> None:
    def fake_request(*args, **kwargs):  # type: ignore[no-untyped-def]
        raise requests.ConnectionError("network down")

    monkeypatch.setattr("gigbook.core.api.requests.request", fake_request)
    with pytest.raises(APIError, match="API request failed for GET /users/me/calendarList"):
        GoogleCalendarAPI(token="t", max_retries=2).list_calendars()


@pytest.mark.parametrize("status", [401, 403])
def test_authorization_errors_are_not_retried(monkeypatch, status: int) -> None:
    attempts = {"count": 0}

    def fake_request(*args, **kwargs):  # type: ignore[no-untyped-def]
        attempts["count"] += 1
        return _MockResponse(status_code=status, text="unauthorized")

    monkeypatch.setattr("gigbook.core.api.requests.request", fake_request)
    with pytest.raises(AuthorizationError) as exc_info:
        GoogleCalendarAPI(token="t").get("/users/me/calendarList")
    assert exc_info.value.status == status
    assert attempts["count"] == 1


def test_client_errors_are_not_retried(monkeypatch) -> None:
    attempts = {"count": 0}

    def fake_request(*args, **kwargs):  # type: ignore[no-untyped-def]
        attempts["count"] += 1
        return _MockResponse(status_code=404, text="missing")

    monkeypatch.setattr("gigbook.core.api.requests.request", fake_request)
    with pytest.raises(APIError) as exc_info:
        GoogleCalendarAPI(token="t").get("/calendars/x/events")
    assert not isinstance(exc_info.value, AuthorizationError)
    assert attempts["count"] == 1


def test_headers_include_bearer() -> None:
    assert GoogleCalendarAPI(token="abc")._headers["Authorization"] == "Bearer abc"


def test_list_calendars_skips_incomplete_items(monkeypatch) -> None:
    payload = {
        "items": [
            {"id": "primary-id", "summary": "Me", "primary": True, "accessRole": "owner"},
            {"id": "no-summary"},
            {"id": "band", "summary": "Band", "backgroundColor": "#ff0000"},
        ]
    }
    monkeypatch.setattr("gigbook.core.api.requests.request", lambda **_: _MockResponse(payload=payload))
    calendars = GoogleCalendarAPI(token="t").list_calendars()
    assert [c.id for c in calendars] == ["primary-id", "band"]
    assert calendars[0].primary and calendars[0].access_role == "owner"
    assert calendars[1].background_color == "#ff0000"
    assert calendars[0].background_color == "#4285f4"


def test_list_events_follows_pagination(monkeypatch) -> None:
    pages = [
        {"items": [_item("a", "Gig", "2026-03-02T20:00:00+02:00")], "nextPageToken": "p2"},
        {"items": [_item("b", None, "2026-03-03T20:00:00Z")]},
    ]
    seen: List[Dict[str, Any]] = []

    def fake_request(**kwargs):  # type: ignore[no-untyped-def]
        seen.append(kwargs)
        return _MockResponse(payload=pages[len(seen) - 1])

    monkeypatch.setattr("gigbook.core.api.requests.request", fake_request)
    start = datetime(2026, 3, 1, tzinfo=timezone.utc)
    events = GoogleCalendarAPI(token="t").list_events("band@group.calendar.google.com", start, start)

    assert [e.id for e in events] == ["a", "b"]
    assert events[1].title == UNTITLED_EVENT
    assert seen[0]["url"].endswith("/calendars/band%40group.calendar.google.com/events")
    assert seen[0]["params"]["singleEvents"] == "true"
    assert seen[1]["params"]["pageToken"] == "p2"


def test_list_events_for_month_dedupes_sorts_and_tolerates_failures(monkeypatch) -> None:
    api = GoogleCalendarAPI(token="t")
    by_calendar = {
        "primary": [
            parse_event(_item("x", "Late", "2026-03-20T10:00:00Z"), "primary"),
            parse_event(_item("dup", "Shared", "2026-03-05T10:00:00Z"), "primary"),
        ],
        "band": [parse_event(_item("dup", "Shared", "2026-03-05T10:00:00Z"), "band")],
    }
    windows = []

    def fake_list_events(calendar_id, time_min, time_max):  # type: ignore[no-untyped-def]
        windows.append((time_min, time_max))
        if calendar_id == "broken":
            raise APIError("HTTP 404")
        return by_calendar[calendar_id]

    monkeypatch.setattr(api, "list_events", fake_list_events)
    events = api.list_events_for_month(2026, 3, ["primary", "broken", "band"])

    assert [e.id for e in events] == ["dup", "x"]
    assert events[0].calendar_id == "primary"
    assert windows[0][0] == datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert windows[0][1].day == 31


def test_list_events_for_month_propagates_authorization_error(monkeypatch) -> None:
    api = GoogleCalendarAPI(token="t")

    def fake_list_events(calendar_id, time_min, time_max):  # type: ignore[no-untyped-def]
        raise AuthorizationError(401)

    monkeypatch.setattr(api, "list_events", fake_list_events)
    with pytest.raises(AuthorizationError):
        api.list_events_for_month(2026, 3, ["primary"])


def test_parse_event_all_day_and_missing_start() -> None:
    event = parse_event({"id": "d", "summary": "Festival", "start": {"date": "2026-03-07"}}, "primary")
    assert event.start == datetime(2026, 3, 7, tzinfo=timezone.utc)
    assert event.end == event.start
    assert parse_event({"id": "n", "summary": "No start"}, "primary") is None
    assert parse_event({"summary": "No id", "start": {"date": "2026-03-07"}}, "primary") is None
