"""Calendar-to-income import pipeline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from gigbook.core.api import AuthorizationError, GoogleCalendarAPI
from gigbook.core.auth import TokenError, TokenGuardian
from gigbook.core.classify import classify, filter_work, rules_for_settings
from gigbook.core.constants import (
    DEFAULT_VAT_RATE,
    IMPORT_NOTE,
    IMPORTED_EVENT_DESCRIPTION,
    WORK_CONFIDENCE_THRESHOLD,
)
from gigbook.core.models import (
    AutoSyncReport,
    CalendarEvent,
    ClassificationResult,
    IncomeEntry,
    SyncResult,
)
from gigbook.core.store import IncomeLedger, SettingsStore

logger = logging.getLogger("gigbook.core.sync")

ApiFactory = Callable[[str], GoogleCalendarAPI]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SyncPreview:
    """Fetched events with their classification, before anything is stored."""

    events: List[CalendarEvent]
    results: List[ClassificationResult]
    work_event_ids: frozenset

    @property
    def work_events(self) -> List[CalendarEvent]:
        return [event for event in self.events if event.id in self.work_event_ids]


def entry_from_event(user_id: str, event: CalendarEvent) -> IncomeEntry:
    """Draft, unpaid income row for a work event."""
    return IncomeEntry(
        user_id=user_id,
        calendar_event_id=event.id,
        date=event.start.date().isoformat(),
        description=event.title or IMPORTED_EVENT_DESCRIPTION,
        vat_rate=str(DEFAULT_VAT_RATE),
        notes=IMPORT_NOTE,
    )


class CalendarSync:
    """Fetches a month of events, keeps the work ones and records drafts."""

    def __init__(
        self,
        guardian: TokenGuardian,
        settings_store: SettingsStore,
        ledger: IncomeLedger,
        api_factory: ApiFactory = GoogleCalendarAPI,
        threshold: float = WORK_CONFIDENCE_THRESHOLD,
        synonyms: Optional[Dict[str, List[str]]] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.guardian = guardian
        self.settings_store = settings_store
        self.ledger = ledger
        self.api_factory = api_factory
        self.threshold = threshold
        self.synonyms = synonyms
        self._clock = clock

    def fetch_events(self, user_id: str, year: int, month: int) -> List[CalendarEvent]:
        settings = self.settings_store.load(user_id)
        calendar_ids: Sequence[str] = settings.selected_calendar_ids

        def _fetch(token: str) -> List[CalendarEvent]:
            return self.api_factory(token).list_events_for_month(year, month, calendar_ids)

        return self.guardian.with_valid_token(user_id, _fetch)

    def preview(self, user_id: str, year: int, month: int) -> SyncPreview:
        events = self.fetch_events(user_id, year, month)
        rules = rules_for_settings(self.settings_store.load(user_id))
        results = classify([event.ref() for event in events], rules, self.synonyms)
        return SyncPreview(
            events=events,
            results=results,
            work_event_ids=frozenset(filter_work(results, self.threshold)),
        )

    def _stamp(self, user_id: str) -> None:
        self.settings_store.update(user_id, last_auto_sync=self._clock().isoformat())

    def sync_user(self, user_id: str, year: int, month: int) -> SyncResult:
        """Import one month of work events as drafts, duplicate-safe."""
        try:
            preview = self.preview(user_id, year, month)
        except TokenError as exc:
            logger.warning("Sync for user %s needs attention: %s", user_id, exc)
            return SyncResult(user_id=user_id, error=str(exc), requires_reconnect=exc.requires_reconnect)
        except AuthorizationError as exc:
            logger.warning("Calendar rejected refreshed token for user %s: %s", user_id, exc)
            return SyncResult(user_id=user_id, error="Token expired or revoked", requires_reconnect=True)

        work_events = preview.work_events
        inserted = self.ledger.insert_if_absent([entry_from_event(user_id, event) for event in work_events])
        self._stamp(user_id)

        logger.info(
            "Synced %s-%02d for user %s: %d events, %d work, %d imported",
            year,
            month,
            user_id,
            len(preview.events),
            len(work_events),
            len(inserted),
        )
        return SyncResult(
            user_id=user_id,
            imported=len(inserted),
            total_events=len(preview.events),
            work_events=len(work_events),
        )

    def auto_sync(
        self,
        year: int,
        month: int,
        delay: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> AutoSyncReport:
        """Sync every auto-sync user serially; one failure never stops the batch."""
        report = AutoSyncReport()
        users = self.settings_store.users_with_auto_sync()
        for index, user_id in enumerate(users):
            try:
                result = self.sync_user(user_id, year, month)
            except Exception as exc:
                logger.error("Failed to sync for user %s: %s", user_id, exc)
                result = SyncResult(user_id=user_id, error=str(exc) or type(exc).__name__)
            report.results.append(result)

            if delay > 0 and index < len(users) - 1:
                sleep(delay)
        return report


def preview_rows(preview: SyncPreview) -> List[Tuple[CalendarEvent, ClassificationResult]]:
    by_id = {result.event_id: result for result in preview.results}
    return [(event, by_id[event.id]) for event in preview.events]

