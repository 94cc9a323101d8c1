"""Time utilities for database models."""

from datetime import UTC, date, datetime


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def ledger_date(timestamp: int) -> date:
    """Return the UTC calendar date of a ledger block timestamp (seconds)."""
    return datetime.fromtimestamp(timestamp, UTC).date()
