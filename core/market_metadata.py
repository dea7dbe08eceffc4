"""Shared symbol, bucket and bar-timespan normalization helpers."""

from __future__ import annotations

import re

DEFAULT_BUCKET = "UNKNOWN"
WILDCARD_BUCKET = "ALL"

# Canonical timespan aliases accepted in run configs.
TIMESPAN_ALIASES: dict[str, str] = {
    "m": "minute",
    "min": "minute",
    "mins": "minute",
    "minute": "minute",
    "minutes": "minute",
    "h": "hour",
    "hr": "hour",
    "hour": "hour",
    "hours": "hour",
    "d": "day",
    "day": "day",
    "days": "day",
    "daily": "day",
    "w": "week",
    "week": "week",
    "weekly": "week",
}

SUPPORTED_TIMESPANS = {"minute", "hour", "day", "week"}

_TIMESPAN_SUFFIX: dict[str, str] = {
    "minute": "m",
    "hour": "h",
    "day": "d",
    "week": "w",
}

_SYMBOL_RE = re.compile(r"^[A-Z0-9][A-Z0-9.\-/]*$")


def normalize_symbol(raw: object) -> str:
    """
    Normalize a ticker symbol to its upper-case canonical form.

    Returns an empty string for blank input so callers can drop the row.
    Raises ValueError for text that cannot be a ticker.
    """
    text = str(raw if raw is not None else "").strip().upper()
    if not text or text in {"NAN", "NONE"}:
        return ""
    if not _SYMBOL_RE.match(text):
        raise ValueError(f"Invalid symbol: {raw}")
    return text


def normalize_bucket(raw: object, default: str = DEFAULT_BUCKET) -> str:
    """Upper-case a bucket label, falling back to ``default`` when blank."""
    text = str(raw if raw is not None else "").strip().upper()
    if not text or text in {"NAN", "NONE"}:
        return default
    return text


def bucket_matches(scenario_bucket: str, position_bucket: str) -> bool:
    return scenario_bucket == WILDCARD_BUCKET or scenario_bucket == position_bucket


def normalize_timespan(raw: str) -> str:
    """Normalize bar timespan aliases to minute/hour/day/week."""
    if not raw or not str(raw).strip():
        raise ValueError("Timespan is required.")

    key = str(raw).strip().lower()
    if key in TIMESPAN_ALIASES:
        return TIMESPAN_ALIASES[key]

    raise ValueError(
        f"Unsupported timespan: {raw}. "
        "Supported: minute, hour, day, week (and short aliases m/h/d/w)."
    )


def bar_cache_label(multiplier: int, timespan: str) -> str:
    """Folder label for one bar size, e.g. ``(30, "minute") -> "30m"``."""
    span = normalize_timespan(timespan)
    count = int(multiplier)
    if count <= 0:
        raise ValueError(f"Bar multiplier must be positive: {multiplier}")
    return f"{count}{_TIMESPAN_SUFFIX[span]}"
