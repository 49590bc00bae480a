"""
Timestamp utilities for consistent time handling across the system.
"""

import time
from datetime import datetime, timezone
from typing import Optional


def to_iso_str(timestamp: Optional[float] = None) -> str:
    """Convert timestamp to an ISO-8601 UTC string, as stored in OpenSearch date fields.

    Args:
        timestamp: Unix timestamp in seconds (optional, uses current time if None)

    Returns:
        ISO-8601 timestamp string
    """
    if timestamp is None:
        timestamp = time.time()
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def to_datetime(value: Optional[str] = None) -> datetime:
    """Parse an ISO-8601 string back to a datetime (current UTC time if None or malformed)."""
    if value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return datetime.now(tz=timezone.utc)


def elapsed_ms(started_at: float) -> int:
    """Milliseconds elapsed since a time.monotonic() reading."""
    return int((time.monotonic() - started_at) * 1000)
