"""Centralised timestamp handling.

All timestamp parsing and conversion goes through this module.
Internal representation: UTC-aware ``datetime``.
ISO 8601 strings are used only at the persistence boundary.
"""

from datetime import date, datetime, timezone


SECONDS_PER_HOUR = 3600.0
SECONDS_PER_DAY = 86400.0


def parse_timestamp(ts: str | datetime) -> datetime:
    """Parse a timestamp representation to a UTC-aware datetime.

    Accepted inputs:
      * ``datetime`` (naive values are assumed to be UTC)
      * ISO 8601 string (``T`` or space separator, with or without ``Z``)
      * ``YYYY/MM/DD`` date prefix (normalised to dashes)

    Raises:
        ValueError: on empty or unparseable strings
    """
    if isinstance(ts, datetime):
        return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)

    s = (ts or "").strip()
    if not s:
        raise ValueError("Empty timestamp")

    # Normalise YYYY/MM/DD → YYYY-MM-DD
    if len(s) >= 10 and s[4] == "/" and s[7] == "/":
        s = f"{s[:4]}-{s[5:7]}-{s[8:]}"

    s = s.replace("Z", "+00:00")
    s = s.replace(" ", "T", 1)

    dt = datetime.fromisoformat(s)
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def parse_optional(ts: str | datetime | None) -> datetime | None:
    if ts is None or ts == "":
        return None
    return parse_timestamp(ts)


def to_iso(dt: datetime) -> str:
    """Format a datetime as an ISO string in UTC."""
    return parse_timestamp(dt).astimezone(timezone.utc).isoformat()


def now_utc() -> datetime:
    """Current UTC time."""
    return datetime.now(timezone.utc)


def utc_date(dt: datetime) -> date:
    """Calendar date of *dt* in UTC."""
    return parse_timestamp(dt).astimezone(timezone.utc).date()


def hours_between(start: datetime, end: datetime) -> float:
    """Elapsed hours from *start* to *end*, never negative."""
    return max(0.0, (end - start).total_seconds() / SECONDS_PER_HOUR)


def days_between(start: datetime, end: datetime) -> float:
    """Elapsed days from *start* to *end* (may be negative)."""
    return (end - start).total_seconds() / SECONDS_PER_DAY
