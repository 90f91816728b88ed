"""Lightweight data models used across commands."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class OAuthCredential:
    """Stored OAuth credential for one user/provider pair."""

    account_id: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    access_token_expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class TokenGrant:
    """Token payload returned by the provider's token endpoint."""

    access_token: Optional[str]
    expires_at: Optional[datetime] = None
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


@dataclass(frozen=True)
class ClassificationRule:
    """Ordered keyword rule labelling events as work or personal."""

    id: str
    kind: str
    match_scope: str
    keywords: Tuple[str, ...]
    enabled: bool = True


@dataclass(frozen=True)
class CalendarEventRef:
    """The subset of a calendar event the classifier looks at."""

    id: str
    title: str
    calendar_source_id: Optional[str] = None


@dataclass(frozen=True)
class ClassificationResult:
    """Work/personal label for a single event."""

    event_id: str
    is_work: bool
    confidence: float
    matched_rule_id: Optional[str] = None
    matched_keyword: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eventId": self.event_id,
            "isWork": self.is_work,
            "confidence": self.confidence,
            "matchedRuleId": self.matched_rule_id,
            "matchedKeyword": self.matched_keyword,
        }


@dataclass(frozen=True)
class CalendarEvent:
    """Calendar event as fetched from the provider."""

    id: str
    title: str
    start: datetime
    end: datetime
    calendar_id: str

    def ref(self) -> CalendarEventRef:
        return CalendarEventRef(id=self.id, title=self.title, calendar_source_id=self.calendar_id)


@dataclass(frozen=True)
class GoogleCalendar:
    """Calendar visible to the connected account."""

    id: str
    summary: str
    primary: bool = False
    background_color: str = "#4285f4"
    access_role: str = "reader"


@dataclass(frozen=True)
class IncomeEntry:
    """Draft income row created from a calendar event."""

    user_id: str
    calendar_event_id: str
    date: str
    description: str
    client_name: str = ""
    amount_gross: str = "0"
    amount_paid: str = "0"
    vat_rate: str = "18.0"
    includes_vat: bool = True
    invoice_status: str = "draft"
    payment_status: str = "unpaid"
    notes: Optional[str] = None


@dataclass
class SyncResult:
    """Outcome of importing one user's calendar month."""

    user_id: str
    imported: int = 0
    total_events: int = 0
    work_events: int = 0
    error: Optional[str] = None
    requires_reconnect: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class AutoSyncReport:
    """Summary of a batch sync over every auto-sync user."""

    results: List[SyncResult] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.ok)

    @property
    def total_imported(self) -> int:
        return sum(result.imported for result in self.results)
