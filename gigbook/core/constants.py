"""Static constants and mappings for gigbook."""

from __future__ import annotations

from datetime import timedelta

PROVIDER_GOOGLE = "google"

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"

CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events.readonly",
]

# Refresh this long before the provider's stated expiry.
TOKEN_EXPIRY_BUFFER = timedelta(minutes=5)
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)

RULE_KINDS = ("work", "personal")
MATCH_SCOPES = ("title", "calendar_source")
MATCH_SCOPE_ALIASES = {
    "title": "title",
    "calendar_source": "calendar_source",
    "calendarsource": "calendar_source",
    "calendar": "calendar_source",
}

TITLE_MATCH_CONFIDENCE = 0.85
CALENDAR_MATCH_CONFIDENCE = 0.90
UNCLASSIFIED_CONFIDENCE = 0.5
WORK_CONFIDENCE_THRESHOLD = 0.7

# Canonical keyword -> translations. Matching expands keyword -> variations only.
DEFAULT_SYNONYMS = {
    "הופעה": ["gig", "show", "concert", "performance"],
    "חתונה": ["wedding"],
    "חזרה": ["rehearsal"],
    "שיעור": ["lesson", "class", "teaching"],
    "פגישה": ["meeting"],
    "להקה": ["band"],
    "ישיבה": ["meeting", "session"],
    "פרויקט": ["project"],
    "רופא": ["doctor", "dr"],
    "שיניים": ["dentist", "dental"],
    "יום הולדת": ["birthday", "bday"],
    "חדר כושר": ["gym", "fitness"],
    "ספורט": ["sport", "sports", "workout"],
    "אמא": ["mom", "mother"],
    "אבא": ["dad", "father"],
    "משפחה": ["family"],
    "חופשה": ["vacation", "holiday"],
}

DEFAULT_RULES = [
    {
        "id": "work-default-title",
        "kind": "work",
        "match_scope": "title",
        "keywords": ["הופעה", "חתונה", "חזרה", "שיעור", "להקה", "פגישה", "ישיבה", "פרויקט"],
        "enabled": True,
    },
    {
        "id": "personal-default-title",
        "kind": "personal",
        "match_scope": "title",
        "keywords": [
            "רופא",
            "שיניים",
            "אמא",
            "אבא",
            "ספורט",
            "חדר כושר",
            "יום הולדת",
            "משפחה",
            "חופשה",
        ],
        "enabled": True,
    },
]

SETTINGS_VERSION = 1
DEFAULT_CALENDAR_IDS = ("primary",)

UNTITLED_EVENT = "אירוע ללא שם"
IMPORTED_EVENT_DESCRIPTION = "אירוע מהיומן"
IMPORT_NOTE = "יובא אוטומטית מהיומן"
DEFAULT_VAT_RATE = 18.0
DEFAULT_CALENDAR_COLOR = "#4285f4"
