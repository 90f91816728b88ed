"""JSON payload builders and export helpers."""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Sequence

from gigbook.core.models import AutoSyncReport, GoogleCalendar, IncomeEntry, SyncResult
from gigbook.core.sync import SyncPreview, preview_rows


def write_json(path: Path, payload: Any) -> Path:
    """Write payload as pretty UTF-8 JSON and return path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path


def sync_result_payload(result: SyncResult) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "userId": result.user_id,
        "imported": result.imported,
        "totalEvents": result.total_events,
        "workEvents": result.work_events,
    }
    if result.error:
        payload["error"] = result.error
        payload["requiresReconnect"] = result.requires_reconnect
    return payload


def auto_sync_payload(report: AutoSyncReport) -> Dict[str, Any]:
    return {
        "message": "Auto-sync completed" if report.processed else "No users with auto-sync enabled",
        "processed": report.processed,
        "successful": report.successful,
        "failed": report.failed,
        "totalImported": report.total_imported,
        "results": [sync_result_payload(result) for result in report.results],
    }


def preview_payload(preview: SyncPreview) -> Dict[str, Any]:
    events: List[Dict[str, Any]] = []
    for event, result in preview_rows(preview):
        events.append(
            {
                "id": event.id,
                "title": event.title,
                "start": event.start.isoformat(),
                "end": event.end.isoformat(),
                "calendarId": event.calendar_id,
                "classification": result.to_dict(),
                "willImport": event.id in preview.work_event_ids,
            }
        )
    return {
        "totalEvents": len(preview.events),
        "workEvents": len(preview.work_event_ids),
        "events": events,
    }


def calendars_payload(calendars: Sequence[GoogleCalendar]) -> Dict[str, Any]:
    return {
        "calendars": [
            {
                "id": cal.id,
                "summary": cal.summary,
                "primary": cal.primary,
                "backgroundColor": cal.background_color,
                "accessRole": cal.access_role,
            }
            for cal in calendars
        ]
    }


def entries_payload(entries: Sequence[IncomeEntry]) -> List[Dict[str, Any]]:
    return [asdict(entry) for entry in entries]
