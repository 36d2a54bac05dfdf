"""Normalizers for free-text admin form fields."""

from __future__ import annotations

import json
from typing import Any

MAX_TAGS = 25
META_ERROR_KEY = "__meta_error"
META_RAW_KEY = "__raw"


def clean_optional_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_tags(value: str | list[str] | None, *, limit: int = MAX_TAGS) -> list[str]:
    if value is None:
        return []
    raw = value.split(",") if isinstance(value, str) else list(value)
    out: list[str] = []
    for item in raw:
        tag = str(item or "").strip()
        if tag and tag not in out:
            out.append(tag)
    return out[:limit]


def parse_meta_json(value: str | dict | None) -> dict[str, Any]:
    """Parse block metadata; malformed input is kept verbatim behind an error marker."""
    if value is None:
        return {}
    if isinstance(value, dict):
        return dict(value)
    text = str(value).strip()
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return {META_ERROR_KEY: "Invalid JSON", META_RAW_KEY: text}
    if not isinstance(parsed, dict):
        return {META_ERROR_KEY: "Invalid JSON", META_RAW_KEY: text}
    return parsed


def safe_json_parse(value: str | dict | None) -> dict[str, Any]:
    if isinstance(value, dict):
        return dict(value)
    text = str(value or "").strip()
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}



LIKE_ESCAPE = "\\"


def contains_pattern(text: str) -> str:
    """LIKE pattern that matches ``text`` literally anywhere; pair with ``escape=LIKE_ESCAPE``."""
    escaped = text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2).replace("%", LIKE_ESCAPE + "%").replace("_", LIKE_ESCAPE + "_")
    return f"%{escaped}%"
