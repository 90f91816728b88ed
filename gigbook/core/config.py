"""Configuration loading and persistence."""

from __future__ import annotations

import copy
import json
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # Python 3.9-3.10
    import tomli as tomllib  # type: ignore[no-redef]

from gigbook.core.constants import (
    DEFAULT_CALENDAR_IDS,
    GOOGLE_AUTH_URI,
    GOOGLE_TOKEN_URI,
    MATCH_SCOPE_ALIASES,
    RULE_KINDS,
    SETTINGS_VERSION,
    WORK_CONFIDENCE_THRESHOLD,
)
from gigbook.core.models import ClassificationRule

_BARE_KEY_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class ConfigError(RuntimeError):
    """Raised when config file parsing or validation fails."""


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def expand_path(path_str: str) -> Path:
    """Expand user/env vars and return absolute path."""
    return Path(os.path.expandvars(path_str)).expanduser().resolve()


def default_data_dir() -> Path:
    """Resolve XDG-style data directory with env override."""
    raw = os.getenv("GIGBOOK_DATA_DIR", "~/.local/share/gigbook")
    return expand_path(raw)


def default_config_path() -> Path:
    """Get default config file path."""
    raw = os.getenv("GIGBOOK_CONFIG_FILE", "~/.config/gigbook/config.toml")
    return expand_path(raw)


def _default_config() -> Dict[str, Any]:
    data_dir = default_data_dir()
    return {
        "google": {
            "client_id": "",
            "client_secret": "",
            "redirect_uri": "http://localhost:8765/oauth/callback",
            "auth_uri": GOOGLE_AUTH_URI,
            "token_uri": GOOGLE_TOKEN_URI,
        },
        "defaults": {
            "user_id": "local",
            "output_format": "pretty",
        },
        "classification": {
            "work_confidence_threshold": WORK_CONFIDENCE_THRESHOLD,
            "synonyms": {},
        },
        "sync": {
            "inter_user_delay": 0.1,
        },
        "storage": {
            "credentials_file": str(data_dir / "credentials.json"),
            "settings_file": str(data_dir / "settings.json"),
            "ledger_file": str(data_dir / "income.json"),
        },
        "api": {
            "rate_limit_delay": 0.0,
            "max_retries": 3,
            "timeout_seconds": 30,
        },
    }


def _read_config(path: Path) -> Dict[str, Any]:
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    try:
        if suffix in {".toml", ""}:
            loaded = tomllib.loads(text)
        else:
            loaded = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON in config file {path}: {exc}") from exc
    except Exception as exc:
        if suffix in {".toml", ""}:
            raise ConfigError(f"Invalid TOML in config file {path}: {exc}") from exc
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigError(f"Config file {path} must contain an object/table at the root")
    return loaded


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from disk, merged with defaults."""
    cfg_path = path or default_config_path()
    cfg = _default_config()

    if cfg_path.exists():
        cfg = _deep_merge(cfg, _read_config(cfg_path))

    return cfg


def _toml_key(key: str) -> str:
    if _BARE_KEY_RE.match(key):
        return key
    return _toml_literal(key)


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    if isinstance(value, (list, tuple)):
        items = ", ".join(_toml_literal(item) for item in value if item is not None)
        return f"[{items}]"
    raise TypeError(f"Unsupported TOML value type: {type(value)!r}")


def _dict_to_toml(data: Dict[str, Any], prefix: Optional[str] = None) -> str:
    lines = []
    plain_keys = []
    nested_keys = []

    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, dict):
            nested_keys.append((key, value))
        else:
            plain_keys.append((key, value))

    if prefix is not None:
        lines.append(f"[{prefix}]")

    for key, value in plain_keys:
        lines.append(f"{_toml_key(key)} = {_toml_literal(value)}")

    if plain_keys and nested_keys:
        lines.append("")

    for index, (key, value) in enumerate(nested_keys):
        table_name = _toml_key(key) if prefix is None else f"{prefix}.{_toml_key(key)}"
        lines.append(_dict_to_toml(value, prefix=table_name))
        if index != len(nested_keys) - 1:
            lines.append("")

    return "\n".join(lines)


def save_config(config: Dict[str, Any], path: Optional[Path] = None) -> Path:
    """Save configuration to disk as TOML (default) or JSON."""
    cfg_path = path or default_config_path()
    cfg_path.parent.mkdir(parents=True, exist_ok=True)

    if cfg_path.suffix.lower() == ".json":
        cfg_path.write_text(json.dumps(config, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        return cfg_path

    cfg_path.write_text(_dict_to_toml(config).strip() + "\n", encoding="utf-8")
    return cfg_path


def update_config_file(updates: Dict[str, Any], path: Optional[Path] = None) -> Path:
    """Merge ``updates`` into the on-disk config only, leaving defaults out of the file."""
    cfg_path = path or default_config_path()
    current = _read_config(cfg_path) if cfg_path.exists() else {}
    return save_config(_deep_merge(current, updates), cfg_path)


def resolve_storage_path(config: Dict[str, Any], key: str) -> Path:
    """Resolve a storage file path from env/config.

    ``key`` is one of ``credentials_file``, ``settings_file`` or
    ``ledger_file``; the matching ``GIGBOOK_<KEY>`` env var wins.
    """
    raw = os.getenv(f"GIGBOOK_{key.upper()}") or config.get("storage", {}).get(key)
    if not raw:
        default_name = {
            "credentials_file": "credentials.json",
            "settings_file": "settings.json",
            "ledger_file": "income.json",
        }.get(key)
        if default_name is None:
            raise ConfigError(f"Unknown storage key: {key}")
        raw = str(default_data_dir() / default_name)
    return expand_path(raw)


def resolve_google_client(config: Dict[str, Any]) -> Tuple[str, str]:
    """Return (client_id, client_secret), preferring env vars."""
    google_cfg = config.get("google", {})
    client_id = os.getenv("GOOGLE_CLIENT_ID") or str(google_cfg.get("client_id") or "")
    client_secret = os.getenv("GOOGLE_CLIENT_SECRET") or str(google_cfg.get("client_secret") or "")
    if not client_id or not client_secret:
        raise ConfigError(
            "Missing Google OAuth client. Set google.client_id/google.client_secret "
            "or GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET."
        )
    return client_id, client_secret


def resolve_user_id(config: Dict[str, Any], explicit: Optional[str] = None) -> str:
    """Resolve the acting user id with CLI override first."""
    if explicit:
        return explicit
    return os.getenv("GIGBOOK_USER") or str(config.get("defaults", {}).get("user_id") or "local")


# ── Per-user calendar settings ──


@dataclass(frozen=True)
class CalendarSettings:
    """Versioned per-user calendar import settings.

    ``rules`` of ``None`` means the user never customised rules and the
    built-in defaults apply.
    """

    version: int = SETTINGS_VERSION
    selected_calendar_ids: Tuple[str, ...] = DEFAULT_CALENDAR_IDS
    default_calendar_id: Optional[str] = None
    rules: Optional[Tuple[ClassificationRule, ...]] = None
    auto_sync_enabled: bool = False
    last_auto_sync: Optional[str] = None


def rule_from_payload(item: Any) -> ClassificationRule:
    """Validate one stored rule mapping."""
    if not isinstance(item, dict):
        raise ConfigError(f"Rule must be an object, got {type(item).__name__}")

    rule_id = str(item.get("id") or "").strip()
    if not rule_id:
        raise ConfigError("Rule is missing an id")

    kind = str(item.get("kind") or item.get("type") or "").strip().lower()
    if kind not in RULE_KINDS:
        raise ConfigError(f"Rule {rule_id}: kind must be one of {', '.join(RULE_KINDS)}")

    raw_scope = item.get("match_scope") or item.get("matchScope") or item.get("matchType") or "title"
    scope = MATCH_SCOPE_ALIASES.get(str(raw_scope).strip().lower().replace("-", "_"))
    if scope is None:
        raise ConfigError(f"Rule {rule_id}: unknown match scope {raw_scope!r}")

    keywords = item.get("keywords", [])
    if not isinstance(keywords, (list, tuple)):
        raise ConfigError(f"Rule {rule_id}: keywords must be a list")
    cleaned: List[str] = []
    for keyword in keywords:
        text = str(keyword).strip()
        if text and text not in cleaned:
            cleaned.append(text)

    enabled = item.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ConfigError(f"Rule {rule_id}: enabled must be true or false")

    return ClassificationRule(
        id=rule_id,
        kind=kind,
        match_scope=scope,
        keywords=tuple(cleaned),
        enabled=enabled,
    )


def rule_to_payload(rule: ClassificationRule) -> Dict[str, Any]:
    return {
        "id": rule.id,
        "kind": rule.kind,
        "match_scope": rule.match_scope,
        "keywords": list(rule.keywords),
        "enabled": rule.enabled,
    }


def rules_from_payload(items: Any) -> Tuple[ClassificationRule, ...]:
    if not isinstance(items, (list, tuple)):
        raise ConfigError("rules must be a list")
    rules = tuple(rule_from_payload(item) for item in items)
    seen = set()
    for rule in rules:
        if rule.id in seen:
            raise ConfigError(f"Duplicate rule id: {rule.id}")
        seen.add(rule.id)
    return rules


def calendar_settings_from_payload(payload: Any) -> CalendarSettings:
    """Validate stored settings into a CalendarSettings instance."""
    if payload is None:
        return CalendarSettings()
    if not isinstance(payload, dict):
        raise ConfigError("Calendar settings must be an object")

    version = payload.get("version", SETTINGS_VERSION)
    if version != SETTINGS_VERSION:
        raise ConfigError(f"Unsupported calendar settings version: {version!r}")

    calendar_ids = payload.get("selected_calendar_ids", payload.get("selectedCalendarIds"))
    if calendar_ids is None:
        selected = DEFAULT_CALENDAR_IDS
    elif isinstance(calendar_ids, (list, tuple)) and all(isinstance(cid, str) for cid in calendar_ids):
        selected = tuple(cid for cid in calendar_ids if cid) or DEFAULT_CALENDAR_IDS
    else:
        raise ConfigError("selected_calendar_ids must be a list of strings")

    default_calendar = payload.get("default_calendar_id", payload.get("defaultCalendarId"))
    if default_calendar is not None and not isinstance(default_calendar, str):
        raise ConfigError("default_calendar_id must be a string")

    raw_rules = payload.get("rules")
    rules = rules_from_payload(raw_rules) if raw_rules is not None else None

    auto_sync = payload.get("auto_sync_enabled", payload.get("autoSyncEnabled", False))
    if not isinstance(auto_sync, bool):
        raise ConfigError("auto_sync_enabled must be true or false")

    last_sync = payload.get("last_auto_sync", payload.get("lastAutoSync"))
    if last_sync is not None and not isinstance(last_sync, str):
        raise ConfigError("last_auto_sync must be an ISO timestamp string")

    return CalendarSettings(
        version=SETTINGS_VERSION,
        selected_calendar_ids=selected,
        default_calendar_id=default_calendar,
        rules=rules,
        auto_sync_enabled=auto_sync,
        last_auto_sync=last_sync,
    )


def calendar_settings_to_payload(settings: CalendarSettings) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "version": settings.version,
        "selected_calendar_ids": list(settings.selected_calendar_ids),
        "auto_sync_enabled": settings.auto_sync_enabled,
    }
    if settings.default_calendar_id is not None:
        payload["default_calendar_id"] = settings.default_calendar_id
    if settings.rules is not None:
        payload["rules"] = [rule_to_payload(rule) for rule in settings.rules]
    if settings.last_auto_sync is not None:
        payload["last_auto_sync"] = settings.last_auto_sync
    return payload
