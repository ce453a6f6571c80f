"""
Single source for "now" time. Supports deterministic mode for tests via
CELLO_STORE_DETERMINISTIC_TIME (ISO format, e.g. 2026-01-01T00:00:00Z).
"""

from __future__ import annotations

import os
from datetime import datetime, timezone


def parse_iso_utc(value: str) -> datetime:
    """Parse an ISO-8601 string; a trailing Z or a missing offset means UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Aware UTC copy of value; a naive value is taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def now_utc() -> datetime:
    """
    Return current UTC time (microsecond precision dropped).
    If env CELLO_STORE_DETERMINISTIC_TIME is set, return that value instead.
    """
    fixed = os.environ.get("CELLO_STORE_DETERMINISTIC_TIME", "").strip()
    if fixed:
        return parse_iso_utc(fixed)
    return datetime.now(timezone.utc).replace(microsecond=0)
