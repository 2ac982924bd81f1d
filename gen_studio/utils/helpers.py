"""Shared helper functions used across multiple modules.

Centralises timestamp handling so that the session, the durable
orchestrator, and the history recorder agree on formats.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC ``datetime``."""
    return datetime.now(UTC)


def parse_timestamp(timestamp: str) -> datetime:
    """Parse an ISO 8601 timestamp string, defaulting to current UTC time.

    Naive timestamps are assumed to be UTC.

    Returns:
        A timezone-aware ``datetime``. Falls back to ``datetime.now(UTC)``
        if the input is empty or unparseable.
    """
    if not timestamp:
        return datetime.now(UTC)
    try:
        parsed = datetime.fromisoformat(timestamp)
    except (ValueError, TypeError):
        return datetime.now(UTC)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def to_epoch_ms(value: datetime) -> int:
    """Milliseconds since the Unix epoch."""
    return int(value.timestamp() * 1000)
