"""Timezone and date helpers for Google Calendar payloads.

Google Calendar start/end payloads
- All-day:
  {"date": "2025-08-23"}  # an optional "timeZone" is informational only
- Timed:
  {"dateTime": "2025-08-23T14:00:00-04:00", "timeZone": "America/New_York"}
  {"dateTime": "2025-08-23T18:00:00.250Z"}
  {"dateTime": "2025-08-23T18:00:00", "timeZone": "UTC"}  # naive with explicit tzid

Public API
- get_zoneinfo(tzid) -> ZoneInfo | None
- ensure_tz(dt, tzid, default_tz="UTC") -> datetime
- parse_rfc3339(raw) -> datetime | None
- parse_calendar_date(raw) -> date | None
- resolve_event_time(payload, default_tz="UTC") -> EventTime | None

Unparseable values resolve to None rather than raising; callers treat an
event without timing as metadata-only.
"""

from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as dtparser

from ..google.models import EventDateTime
from ..models import AllDayDate, EventTime, Instant

__all__ = [
    "ensure_tz",
    "get_zoneinfo",
    "parse_calendar_date",
    "parse_rfc3339",
    "resolve_event_time",
]


def get_zoneinfo(tzid: str | None) -> ZoneInfo | None:
    """Resolve a TZID to ZoneInfo, returning None if not found or not provided."""
    if not tzid:
        return None
    try:
        return ZoneInfo(tzid)
    except (ZoneInfoNotFoundError, ValueError):
        if tzid.upper() in {"UTC", "Z"}:
            return ZoneInfo("UTC")
        return None


def ensure_tz(dt: datetime, tzid: str | None, default_tz: str = "UTC") -> datetime:
    """Attach tzid (or default_tz, or UTC) to a naive datetime; aware ones pass through."""
    if dt.tzinfo is not None:
        return dt
    z = get_zoneinfo(tzid) or get_zoneinfo(default_tz) or ZoneInfo("UTC")
    return dt.replace(tzinfo=z)


def parse_rfc3339(raw: str) -> datetime | None:
    """Parse an RFC 3339 timestamp, with or without fractional seconds."""
    try:
        return dtparser.isoparse(raw.strip())
    except (ValueError, OverflowError):
        return None


def parse_calendar_date(raw: str) -> date | None:
    """Parse YYYY-MM-DD as a plain calendar date."""
    try:
        return datetime.strptime(raw.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def resolve_event_time(
    payload: EventDateTime | None, default_tz: str = "UTC"
) -> EventTime | None:
    """Resolve a start/end payload into Instant | AllDayDate.

    A present `dateTime` wins over `date`; if it fails to parse the value is
    unresolved (None), the date field is not consulted.
    """
    if payload is None:
        return None
    if payload.date_time is not None:
        dt = parse_rfc3339(payload.date_time)
        if dt is None:
            return None
        return Instant(value=ensure_tz(dt, payload.time_zone, default_tz), tzid=payload.time_zone)
    if payload.date is not None:
        d = parse_calendar_date(payload.date)
        return AllDayDate(d) if d is not None else None
    return None
