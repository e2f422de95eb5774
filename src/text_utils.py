"""Formatting helpers for sizes and timestamps shown in analysis sections."""

from __future__ import annotations

from datetime import datetime, timezone

SIZE_UNIT = 1024
SIZE_PREFIXES = "KMGTPE"


def human_readable_size(size_bytes: int) -> str:
    """Format a byte count with 1024-based units and one decimal place.

    Counts below 1024 are printed as whole bytes (``"512 B"``); larger counts
    use the largest fitting unit, e.g. ``1536 -> "1.5 KB"``.
    """
    if size_bytes < SIZE_UNIT:
        return f"{size_bytes} B"

    divisor = SIZE_UNIT
    exponent = 0
    remaining = size_bytes // SIZE_UNIT
    while remaining >= SIZE_UNIT and exponent < len(SIZE_PREFIXES) - 1:
        divisor *= SIZE_UNIT
        exponent += 1
        remaining //= SIZE_UNIT

    return f"{size_bytes / divisor:.1f} {SIZE_PREFIXES[exponent]}B"


def format_timestamp(value: datetime) -> str:
    """Return an RFC 3339 timestamp with second precision.

    Naive datetimes are assumed to be UTC, and a UTC offset is written as ``Z``.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    formatted = value.isoformat(timespec="seconds")
    if formatted.endswith("+00:00"):
        formatted = formatted[: -len("+00:00")] + "Z"
    return formatted


def utc_timestamp() -> str:
    """Return the current UTC time as an RFC 3339 timestamp."""
    return format_timestamp(datetime.now(timezone.utc))
