"""Formatting helpers used by console output."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from gigbook.core.models import ClassificationResult


def format_confidence(confidence: Optional[float]) -> str:
    """Format a 0..1 confidence as a percentage."""
    if confidence is None:
        return "N/A"
    return f"{float(confidence) * 100:.0f}%"


def format_label(result: ClassificationResult) -> str:
    """Short work/personal label, marking unmatched events."""
    if result.matched_rule_id is None:
        return "work?"
    return "work" if result.is_work else "personal"


def format_expiry(expires_at: Optional[datetime], now: datetime) -> str:
    """Describe a token expiry relative to ``now``."""
    if expires_at is None:
        return "unknown"
    seconds = int((expires_at - now).total_seconds())
    if seconds <= 0:
        return f"expired {_format_span(-seconds)} ago"
    return f"in {_format_span(seconds)}"


def _format_span(seconds: int) -> str:
    if seconds >= 86400:
        return f"{seconds // 86400}d"
    if seconds >= 3600:
        h, rem = divmod(seconds, 3600)
        return f"{h}h{rem // 60:02d}m"
    if seconds >= 60:
        return f"{seconds // 60}min"
    return f"{seconds}sec"
