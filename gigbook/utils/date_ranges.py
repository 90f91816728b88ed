"""Month parsing and calendar window helpers."""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timezone, tzinfo
from typing import Optional, Tuple

import typer

_MONTH_RE = re.compile(r"^(\d{4})-(\d{1,2})$")


def validate_month(value: Optional[str]) -> Optional[str]:
    """Typer callback that validates YYYY-MM format for month options."""
    if value is None:
        return value
    match = _MONTH_RE.match(value)
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise typer.BadParameter(
            f"Invalid month '{value}'. Expected format: YYYY-MM (e.g. 2026-01)"
        )
    return value


def parse_month(value: str) -> Tuple[int, int]:
    """Parse YYYY-MM into (year, month)."""
    match = _MONTH_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid month: {value!r}")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month: {value!r}")
    return year, month


def resolve_month(value: Optional[str] = None, today: Optional[date] = None) -> Tuple[int, int]:
    """Explicit month when given, otherwise the current one."""
    if value:
        return parse_month(value)
    now = today or date.today()
    return now.year, now.month


def month_bounds(year: int, month: int, tz: tzinfo = timezone.utc) -> Tuple[datetime, datetime]:
    """First instant and last instant (inclusive) of a month."""
    last_day = calendar.monthrange(year, month)[1]
    start = datetime(year, month, 1, 0, 0, 0, tzinfo=tz)
    end = datetime(year, month, last_day, 23, 59, 59, 999000, tzinfo=tz)
    return start, end
