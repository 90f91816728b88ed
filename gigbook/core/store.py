"""JSON-file persistence for credentials, calendar settings and imported income."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from dataclasses import asdict, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from gigbook.core.config import (
    CalendarSettings,
    ConfigError,
    calendar_settings_from_payload,
    calendar_settings_to_payload,
)
from gigbook.core.models import IncomeEntry, OAuthCredential, TokenGrant

logger = logging.getLogger("gigbook.core.store")

_CREDENTIAL_FIELDS = {"access_token", "refresh_token", "access_token_expires_at", "scope"}


class StoreError(RuntimeError):
    """Raised when a local store cannot be read or updated."""


class CredentialStore(Protocol):
    """Credential persistence consumed by the token guardian."""

    def read(self, user_id: str, provider_id: str) -> Optional[OAuthCredential]:
        ...

    def write(self, account_id: str, fields: Dict[str, Any]) -> None:
        ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise StoreError(f"Invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _read_json(path: Path, default: Dict[str, Any]) -> Dict[str, Any]:
    if not path.exists():
        return default
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise StoreError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise StoreError(f"{path} must contain a JSON object")
    return data


def _write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}-", dir=str(path.parent))
    tmp_path = Path(temp_name)
    try:
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False)
            handle.write("\n")
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


class JsonCredentialStore:
    """Credential records keyed by account id in a private JSON file."""

    def __init__(self, path: Path, clock=utc_now) -> None:
        self.path = path
        self._clock = clock

    def _load(self) -> Dict[str, Any]:
        data = _read_json(self.path, {"accounts": {}})
        accounts = data.get("accounts")
        if not isinstance(accounts, dict):
            raise StoreError(f"{self.path} is missing an 'accounts' object")
        return data

    def _find(self, data: Dict[str, Any], user_id: str, provider_id: str) -> Optional[str]:
        for account_id, record in data["accounts"].items():
            if record.get("user_id") == user_id and record.get("provider_id") == provider_id:
                return account_id
        return None

    def read(self, user_id: str, provider_id: str) -> Optional[OAuthCredential]:
        data = self._load()
        account_id = self._find(data, user_id, provider_id)
        if account_id is None:
            return None
        record = data["accounts"][account_id]
        return OAuthCredential(
            account_id=account_id,
            access_token=record.get("access_token") or None,
            refresh_token=record.get("refresh_token") or None,
            access_token_expires_at=parse_timestamp(record.get("access_token_expires_at")),
        )

    def write(self, account_id: str, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - _CREDENTIAL_FIELDS
        if unknown:
            raise StoreError(f"Unknown credential fields: {', '.join(sorted(unknown))}")

        data = self._load()
        record = data["accounts"].get(account_id)
        if record is None:
            raise StoreError(f"No credential record for account {account_id}")

        for key, value in fields.items():
            record[key] = format_timestamp(value) if isinstance(value, datetime) else value
        record["updated_at"] = format_timestamp(self._clock())
        _write_json(self.path, data)

    def link(self, user_id: str, provider_id: str, grant: TokenGrant) -> str:
        """Create or replace the credential for a user/provider pair."""
        data = self._load()
        now = format_timestamp(self._clock())
        account_id = self._find(data, user_id, provider_id)
        previous: Dict[str, Any] = {}
        if account_id is None:
            account_id = uuid.uuid4().hex
        else:
            previous = data["accounts"][account_id]

        data["accounts"][account_id] = {
            "user_id": user_id,
            "provider_id": provider_id,
            "access_token": grant.access_token,
            # Providers only send a refresh token on first consent.
            "refresh_token": grant.refresh_token or previous.get("refresh_token"),
            "access_token_expires_at": format_timestamp(grant.expires_at),
            "scope": grant.scope or previous.get("scope"),
            "created_at": previous.get("created_at", now),
            "updated_at": now,
        }
        _write_json(self.path, data)
        logger.info("Linked %s account %s for user %s", provider_id, account_id, user_id)
        return account_id

    def unlink(self, user_id: str, provider_id: str) -> bool:
        """Delete the credential for a user/provider pair."""
        data = self._load()
        account_id = self._find(data, user_id, provider_id)
        if account_id is None:
            return False
        del data["accounts"][account_id]
        _write_json(self.path, data)
        logger.info("Unlinked %s account %s for user %s", provider_id, account_id, user_id)
        return True


class SettingsStore:
    """Per-user calendar settings persisted as JSON."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def _load(self) -> Dict[str, Any]:
        data = _read_json(self.path, {"users": {}})
        if not isinstance(data.get("users"), dict):
            raise StoreError(f"{self.path} is missing a 'users' object")
        return data

    def load(self, user_id: str) -> CalendarSettings:
        payload = self._load()["users"].get(user_id)
        return calendar_settings_from_payload(payload)

    def save(self, user_id: str, settings: CalendarSettings) -> None:
        data = self._load()
        data["users"][user_id] = calendar_settings_to_payload(settings)
        _write_json(self.path, data)

    def update(self, user_id: str, **changes: Any) -> CalendarSettings:
        updated = replace(self.load(user_id), **changes)
        self.save(user_id, updated)
        return updated

    def users_with_auto_sync(self) -> List[str]:
        users: List[str] = []
        for user_id, payload in self._load()["users"].items():
            try:
                settings = calendar_settings_from_payload(payload)
            except ConfigError as exc:
                logger.warning("Skipping user %s with invalid calendar settings: %s", user_id, exc)
                continue
            if settings.auto_sync_enabled:
                users.append(user_id)
        return users


class IncomeLedger:
    """Imported draft income entries, unique per (user, calendar event)."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def _load(self) -> Dict[str, Any]:
        data = _read_json(self.path, {"entries": []})
        if not isinstance(data.get("entries"), list):
            raise StoreError(f"{self.path} is missing an 'entries' list")
        return data

    def entries(self, user_id: Optional[str] = None) -> List[IncomeEntry]:
        rows = self._load()["entries"]
        return [
            IncomeEntry(**row)
            for row in rows
            if isinstance(row, dict) and (user_id is None or row.get("user_id") == user_id)
        ]

    def insert_if_absent(self, entries: Sequence[IncomeEntry]) -> List[IncomeEntry]:
        """Insert rows whose (user_id, calendar_event_id) is new; return those."""
        if not entries:
            return []
        data = self._load()
        existing = {
            (row.get("user_id"), row.get("calendar_event_id"))
            for row in data["entries"]
            if isinstance(row, dict)
        }

        inserted: List[IncomeEntry] = []
        for entry in entries:
            key = (entry.user_id, entry.calendar_event_id)
            if key in existing:
                continue
            existing.add(key)
            data["entries"].append(asdict(entry))
            inserted.append(entry)

        if inserted:
            _write_json(self.path, data)
        return inserted
