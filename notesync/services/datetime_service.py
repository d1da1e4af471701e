"""Datetime helpers: epoch milliseconds for sync bookkeeping, ISO strings for documents."""

from __future__ import annotations

from datetime import datetime, timezone

import pendulum


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a strict timezone-aware datetime.

    Accepts ISO 8601 variants, space-separated date/time, and date-only strings.
    Missing timezone defaults to default_tz.
    Missing time components default to zeros.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    value_str = value.strip()

    parsed = pendulum.parse(value_str, tz=default_tz, strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(
            parsed.year, parsed.month, parsed.day, tz=default_tz  # type: ignore[union-attr]
        )
    return parsed  # type: ignore[return-value]


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def now_millis() -> int:
    """Return the current time as epoch milliseconds."""
    return int(now_utc().timestamp() * 1000)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for JSON serialization."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def millis_to_iso(millis: int) -> str:
    """Format epoch milliseconds as an ISO 8601 UTC string."""
    return format_iso(datetime.fromtimestamp(millis / 1000, tz=timezone.utc))


def iso_to_millis(value: str | datetime) -> int:
    """Parse a lax datetime value into epoch milliseconds."""
    return int(parse_datetime(value).timestamp() * 1000)
