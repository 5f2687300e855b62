"""Bounded JSON-object extraction from model output."""

from __future__ import annotations

from typing import Any

import orjson

MAX_JSON_LENGTH = 1_000_000


def extract_json_object(text: str | None) -> dict[str, Any] | None:
    """Parse the first ``{...}`` span in ``text``.

    Models often wrap JSON in prose or code fences; the outermost braces
    are taken. Returns None for empty, oversized or invalid input, and for
    JSON that is not an object.
    """
    if not text or len(text) > MAX_JSON_LENGTH:
        return None
    try:
        data = orjson.loads(text)
    except orjson.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            data = orjson.loads(text[start : end + 1])
        except orjson.JSONDecodeError:
            return None
    return data if isinstance(data, dict) else None


def get_str_list(data: dict[str, Any], *keys: str) -> list[str]:
    """First list-of-strings found under any of ``keys`` (case-insensitive)."""
    lowered = {k.lower(): v for k, v in data.items()}
    for key in keys:
        value = lowered.get(key.lower())
        if isinstance(value, list):
            return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]
    return []


def get_value(data: dict[str, Any], *keys: str) -> Any:
    """First value found under any of ``keys`` (case-insensitive)."""
    lowered = {k.lower(): v for k, v in data.items()}
    for key in keys:
        if key.lower() in lowered:
            return lowered[key.lower()]
    return None
