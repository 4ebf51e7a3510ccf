"""Utility helpers shared across modules."""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Force a datetime into UTC without altering instant."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def isoformat_utc(dt: datetime) -> str:
    """Return an ISO string with a trailing Z."""
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


def parse_bool(value) -> bool | None:
    """Map the loosely typed flags returned by Exchange onto a tri-state."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes"}:
            return True
        if lowered in {"false", "0", "no"}:
            return False
        return None
    if isinstance(value, int):
        return bool(value)
    return None


def format_flag(value: bool | None) -> str:
    if value is None:
        return "unknown"
    return str(value)
