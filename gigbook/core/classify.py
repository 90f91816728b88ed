"""Keyword rule classification of calendar events."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from gigbook.core.config import CalendarSettings, rules_from_payload
from gigbook.core.constants import (
    CALENDAR_MATCH_CONFIDENCE,
    DEFAULT_RULES,
    DEFAULT_SYNONYMS,
    TITLE_MATCH_CONFIDENCE,
    UNCLASSIFIED_CONFIDENCE,
    WORK_CONFIDENCE_THRESHOLD,
)
from gigbook.core.models import CalendarEventRef, ClassificationResult, ClassificationRule

SynonymTable = Mapping[str, Sequence[str]]


def default_rules() -> Tuple[ClassificationRule, ...]:
    """Return the built-in rule set."""
    return rules_from_payload(DEFAULT_RULES)


def normalize_synonyms(table: Mapping[str, Iterable[str]]) -> Dict[str, List[str]]:
    """Lower-case keys and values of a synonym table."""
    normalized: Dict[str, List[str]] = {}
    for key, values in table.items():
        bucket = normalized.setdefault(str(key).strip().lower(), [])
        for value in values:
            text = str(value).strip().lower()
            if text and text not in bucket:
                bucket.append(text)
    return normalized


_DEFAULT_TABLE = normalize_synonyms(DEFAULT_SYNONYMS)


def synonyms_from_config(config: Dict[str, Any]) -> Dict[str, List[str]]:
    """Build the synonym table from config if provided, otherwise defaults."""
    configured = config.get("classification", {}).get("synonyms", {})
    if not isinstance(configured, dict) or not configured:
        return dict(_DEFAULT_TABLE)

    table: Dict[str, List[str]] = {}
    for key, value in configured.items():
        if isinstance(value, str):
            table[str(key)] = [value]
        elif isinstance(value, Iterable):
            table[str(key)] = [str(item) for item in value]
    return normalize_synonyms(table) or dict(_DEFAULT_TABLE)


def rules_for_settings(settings: CalendarSettings) -> Tuple[ClassificationRule, ...]:
    """User rules when configured, otherwise the built-in defaults."""
    if settings.rules is None:
        return default_rules()
    return settings.rules


def keyword_variations(keyword: str, synonyms: Optional[SynonymTable] = None) -> List[str]:
    """Return the keyword itself followed by its registered translations."""
    table = _DEFAULT_TABLE if synonyms is None else synonyms
    base = keyword.lower()
    variations = [base]
    for translation in table.get(base, ()):
        lowered = translation.lower()
        if lowered not in variations:
            variations.append(lowered)
    return variations


def _match_keywords(
    haystack: str,
    keywords: Sequence[str],
    synonyms: SynonymTable,
) -> Optional[str]:
    for keyword in keywords:
        for variation in keyword_variations(keyword, synonyms):
            if variation and variation in haystack:
                return keyword
    return None


def classify_event(
    event: CalendarEventRef,
    rules: Sequence[ClassificationRule],
    synonyms: Optional[SynonymTable] = None,
) -> ClassificationResult:
    """Classify one event; the first enabled matching rule wins."""
    table = _DEFAULT_TABLE if synonyms is None else synonyms
    title = (event.title or "").lower()
    source = (event.calendar_source_id or "").lower()

    for rule in rules:
        if not rule.enabled:
            continue

        if rule.match_scope == "title":
            haystack, confidence = title, TITLE_MATCH_CONFIDENCE
        elif rule.match_scope == "calendar_source":
            if not source:
                continue
            haystack, confidence = source, CALENDAR_MATCH_CONFIDENCE
        else:
            continue

        keyword = _match_keywords(haystack, rule.keywords, table)
        if keyword is not None:
            return ClassificationResult(
                event_id=event.id,
                is_work=rule.kind == "work",
                confidence=confidence,
                matched_rule_id=rule.id,
                matched_keyword=keyword,
            )

    # Unmatched events surface for review instead of being dropped.
    return ClassificationResult(
        event_id=event.id,
        is_work=True,
        confidence=UNCLASSIFIED_CONFIDENCE,
    )


def classify(
    events: Sequence[CalendarEventRef],
    rules: Optional[Sequence[ClassificationRule]] = None,
    synonyms: Optional[SynonymTable] = None,
) -> List[ClassificationResult]:
    """Classify events in input order. Never raises for unmatched input."""
    active_rules = default_rules() if rules is None else rules
    return [classify_event(event, active_rules, synonyms) for event in events]


def filter_work(
    results: Iterable[ClassificationResult],
    threshold: float = WORK_CONFIDENCE_THRESHOLD,
) -> Set[str]:
    """Event ids labelled work with at least ``threshold`` confidence."""
    return {result.event_id for result in results if result.is_work and result.confidence >= threshold}


def events_from_payload(items: Sequence[Dict[str, Any]]) -> List[CalendarEventRef]:
    """Convert loosely shaped event dicts (JSON/YAML input) to refs."""
    events: List[CalendarEventRef] = []
    for index, item in enumerate(items):
        event_id = item.get("id") or item.get("eventId") or str(index + 1)
        title = item.get("title") or item.get("summary") or ""
        source = item.get("calendar_source_id") or item.get("calendarId") or item.get("calendar")
        events.append(
            CalendarEventRef(
                id=str(event_id),
                title=str(title),
                calendar_source_id=str(source) if source else None,
            )
        )
    return events
