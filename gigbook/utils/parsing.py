"""Parsing helpers for event and rule input files."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


def load_records(file_path: Optional[Path], read_stdin: bool, stdin_text: str = "") -> List[Dict[str, Any]]:
    """Load object(s) from a JSON/YAML file or stdin text.

    A top-level ``{"events": [...]}`` or ``{"items": [...]}`` wrapper, as the
    Calendar API returns, is unwrapped.
    """
    raw_data: Any
    if file_path:
        text = file_path.read_text(encoding="utf-8")
        if file_path.suffix.lower() in {".yaml", ".yml"}:
            raw_data = yaml.safe_load(text)
        else:
            raw_data = json.loads(text)
    elif read_stdin:
        text = stdin_text.strip()
        if not text:
            return []
        try:
            raw_data = json.loads(text)
        except json.JSONDecodeError:
            raw_data = yaml.safe_load(text)
    else:
        return []

    if isinstance(raw_data, dict):
        for key in ("events", "items"):
            if isinstance(raw_data.get(key), list):
                raw_data = raw_data[key]
                break
        else:
            return [raw_data]
    if isinstance(raw_data, list):
        return [item for item in raw_data if isinstance(item, dict)]
    return []


def split_keywords(values: List[str]) -> List[str]:
    """Accept repeated options and comma-separated lists alike."""
    keywords: List[str] = []
    for value in values:
        for part in value.split(","):
            text = part.strip()
            if text and text not in keywords:
                keywords.append(text)
    return keywords
