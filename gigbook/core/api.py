"""Google Calendar API client with retry and rate limiting."""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

import requests

from gigbook.core.constants import CALENDAR_API_BASE, DEFAULT_CALENDAR_COLOR, UNTITLED_EVENT
from gigbook.core.models import CalendarEvent, GoogleCalendar
from gigbook.utils.date_ranges import month_bounds

logger = logging.getLogger("gigbook.core.api")

_RETRY_STATUSES = (429, 500, 502, 503, 504)


class APIError(RuntimeError):
    """Raised for API failures after retries."""


class AuthorizationError(APIError):
    """Raised when the provider rejects the access token (HTTP 401/403)."""

    def __init__(self, status: int, message: str = "") -> None:
        self.status = status
        super().__init__(message or f"authorization rejected with HTTP {status}")


def _parse_event_time(raw: Optional[Dict[str, Any]]) -> Optional[datetime]:
    if not isinstance(raw, dict):
        return None
    value = raw.get("dateTime")
    if value:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    value = raw.get("date")
    if value:
        day = date.fromisoformat(str(value))
        return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return None


def parse_event(item: Dict[str, Any], calendar_id: str) -> Optional[CalendarEvent]:
    """Convert an API event item; None when it lacks an id or start."""
    event_id = item.get("id")
    if not event_id:
        return None
    try:
        start = _parse_event_time(item.get("start"))
        end = _parse_event_time(item.get("end"))
    except ValueError:
        logger.debug("Skipping event %s with unparseable time", event_id)
        return None
    if start is None:
        return None
    return CalendarEvent(
        id=str(event_id),
        title=str(item.get("summary") or UNTITLED_EVENT),
        start=start,
        end=end or start,
        calendar_id=calendar_id,
    )


class GoogleCalendarAPI:
    """Thin wrapper around the Google Calendar v3 REST API."""

    def __init__(
        self,
        token: str,
        base_url: str = CALENDAR_API_BASE,
        rate_limit_delay: float = 0.0,
        max_retries: int = 3,
        timeout_seconds: int = 30,
    ) -> None:
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.rate_limit_delay = rate_limit_delay
        self.max_retries = max_retries
        self.timeout_seconds = timeout_seconds
        self._has_sent_request = False

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
        }

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                if self.rate_limit_delay > 0 and self._has_sent_request:
                    time.sleep(self.rate_limit_delay)

                self._has_sent_request = True
                response = requests.request(
                    method=method,
                    url=url,
                    headers=self._headers,
                    params=params,
                    timeout=self.timeout_seconds,
                )
                if response.status_code in (401, 403):
                    raise AuthorizationError(response.status_code, f"{method} {path} rejected: {response.text[:200]}")
                if response.status_code in _RETRY_STATUSES:
                    raise requests.HTTPError(response.text, response=response)
                if response.status_code >= 400:
                    raise APIError(f"API request failed for {method} {path}: HTTP {response.status_code}")

                if not response.text:
                    return {}
                return response.json()
            except (requests.RequestException, ValueError) as exc:
                last_error = exc
                if attempt >= self.max_retries:
                    break
                time.sleep(min(2**attempt, 8))

        raise APIError(f"API request failed for {method} {path}: {last_error}")

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("GET", path, params=params)

    def list_calendars(self) -> List[GoogleCalendar]:
        payload = self.get(
            "/users/me/calendarList",
            params={"showHidden": "false", "minAccessRole": "reader"},
        )
        items = payload.get("items", []) if isinstance(payload, dict) else []

        calendars: List[GoogleCalendar] = []
        for item in items:
            if not isinstance(item, dict) or not item.get("id") or not item.get("summary"):
                continue
            calendars.append(
                GoogleCalendar(
                    id=str(item["id"]),
                    summary=str(item["summary"]),
                    primary=bool(item.get("primary", False)),
                    background_color=str(item.get("backgroundColor") or DEFAULT_CALENDAR_COLOR),
                    access_role=str(item.get("accessRole") or "reader"),
                )
            )
        return calendars

    def list_events(self, calendar_id: str, time_min: datetime, time_max: datetime) -> List[CalendarEvent]:
        """Fetch single (expanded) events in a window, following pagination."""
        events: List[CalendarEvent] = []
        page_token: Optional[str] = None
        path = f"/calendars/{quote(calendar_id, safe='')}/events"

        while True:
            params: Dict[str, Any] = {
                "timeMin": time_min.isoformat(),
                "timeMax": time_max.isoformat(),
                "singleEvents": "true",
                "orderBy": "startTime",
                "maxResults": 500,
                "fields": "items(id,summary,start,end),nextPageToken",
            }
            if page_token:
                params["pageToken"] = page_token

            payload = self.get(path, params=params)
            if not isinstance(payload, dict):
                break
            for item in payload.get("items", []):
                if isinstance(item, dict):
                    event = parse_event(item, calendar_id)
                    if event is not None:
                        events.append(event)

            page_token = payload.get("nextPageToken")
            if not page_token:
                break
        return events

    def list_events_for_month(
        self,
        year: int,
        month: int,
        calendar_ids: Iterable[str] = ("primary",),
    ) -> List[CalendarEvent]:
        """Events from several calendars, de-duplicated by id and sorted by start.

        A calendar failing with a non-authorization error is logged and
        skipped; authorization failures propagate so the caller can refresh.
        """
        time_min, time_max = month_bounds(year, month)
        collected: List[CalendarEvent] = []
        for calendar_id in calendar_ids:
            try:
                collected.extend(self.list_events(calendar_id, time_min, time_max))
            except AuthorizationError:
                raise
            except APIError as exc:
                logger.warning("Failed to fetch events from calendar %s: %s", calendar_id, exc)

        seen = set()
        unique: List[CalendarEvent] = []
        for event in collected:
            if event.id in seen:
                continue
            seen.add(event.id)
            unique.append(event)

        unique.sort(key=lambda event: event.start)
        return unique
