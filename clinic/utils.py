"""Shared utility functions."""

from __future__ import annotations

from datetime import datetime, timezone

TIMESTAMP_SEPARATORS = ":."


def _trim(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")


def format_size(size_bytes: int) -> str:
    """Format byte count to human-readable string."""
    if size_bytes < 1024:
        return f"{size_bytes} Bytes"
    elif size_bytes < 1024 * 1024:
        return f"{_trim(size_bytes / 1024)} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{_trim(size_bytes / (1024 * 1024))} MB"
    else:
        return f"{_trim(size_bytes / (1024 * 1024 * 1024))} GB"


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def iso_timestamp(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix.

    2026-10-18 09:30:00.5 UTC → "2026-10-18T09:30:00.500Z"
    """
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def sanitize_timestamp(stamp: str) -> str:
    """Make an ISO timestamp usable inside a file name."""
    for ch in TIMESTAMP_SEPARATORS:
        stamp = stamp.replace(ch, "-")
    return stamp


def parse_timestamp(stamp: str) -> datetime:
    """Parse a stored ``created_at`` value; unparseable values sort as oldest."""
    if stamp.endswith("Z"):
        stamp = stamp[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(stamp)
    except (TypeError, ValueError):
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
