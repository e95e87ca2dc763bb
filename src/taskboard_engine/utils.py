"""Provide utility helpers for timestamps and calendar days."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _generate_id(prefix: str) -> str:
    """Short human-friendly record ID: ``<prefix>-<12hex>``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        if not isinstance(value, str):
            value = str(value)
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        dt = datetime.fromisoformat(value)
        # If a naive timestamp slips in, assume UTC to avoid crashes.
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except ValueError:
        return None


def _parse_day(value: Any) -> Optional[date]:
    """Coerce *value* to a calendar day.

    Accepts ``date``/``datetime`` objects and ISO-8601 strings (either a plain
    ``YYYY-MM-DD`` day or a full timestamp, which is truncated to its day).
    Returns ``None`` when the value cannot be interpreted.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    parsed = _parse_iso(text)
    return parsed.date() if parsed else None


def _day_iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None
