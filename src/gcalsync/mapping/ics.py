"""LocalEvent ↔ iCalendar (VCALENDAR with a single VEVENT) for CalDAV storage.

Writing
- UID is owned by the store (new uuid on create, preserved on update).
- DESCRIPTION carries the notes, and with them the correlation sentinel.
- Timed values are written in UTC; all-day values as DATE with an exclusive
  DTEND (inclusive local end + 1 day).
- RRULE per RecurrenceRule; one DISPLAY VALARM per reminder.
- X-GCALSYNC-HASH stores the content fingerprint used for change detection.
- Attendees are not written: a CalDAV server with scheduling support would
  send invitations for ATTENDEE properties.
- An event without timing keeps the DTSTART/DTEND of the resource it replaces.

Public API
- local_event_to_ics(event, *, uid, content_hash, keep_timing_from=None) -> str
- parse_resource(ics_text) -> ParsedResource | None
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any

from icalendar import Alarm, Calendar, Event  # type: ignore

from ..models import AllDayDate, EventTime, Instant, LocalEvent

__all__ = ["HASH_PROPERTY", "ParsedResource", "local_event_to_ics", "parse_resource"]

log = logging.getLogger(__name__)

PRODID = "-//gcalsync//gcalsync//EN"
HASH_PROPERTY = "X-GCALSYNC-HASH"


@dataclass(frozen=True)
class ParsedResource:
    uid: str | None
    notes: str | None
    content_hash: str | None
    dtstart: Any = None  # raw icalendar property, carried over for metadata-only updates
    dtend: Any = None


def _as_date(value: EventTime) -> date:
    if isinstance(value, AllDayDate):
        return value.value
    return value.value.date()


def _as_utc(value: Instant) -> datetime:
    return value.value.astimezone(UTC)


def _add_timing(ve: Event, event: LocalEvent) -> None:
    start, end = event.start, event.end
    assert start is not None and end is not None
    if event.all_day or isinstance(start, AllDayDate) or isinstance(end, AllDayDate):
        # mismatched kinds are coerced to all-day
        start_d = _as_date(start)
        end_d = max(_as_date(end), start_d)
        ve.add("dtstart", start_d)
        ve.add("dtend", end_d + timedelta(days=1))
    else:
        ve.add("dtstart", _as_utc(start))
        ve.add("dtend", _as_utc(end))


def _add_valarm(ve: Event, offset_minutes: int) -> None:
    alarm = Alarm()
    alarm.add("action", "DISPLAY")
    alarm.add("description", "Reminder")
    alarm.add("trigger", timedelta(minutes=offset_minutes))
    ve.add_component(alarm)


def local_event_to_ics(
    event: LocalEvent,
    *,
    uid: str,
    content_hash: str,
    keep_timing_from: ParsedResource | None = None,
) -> str:
    cal = Calendar()
    cal.add("prodid", PRODID)
    cal.add("version", "2.0")
    cal.add("calscale", "GREGORIAN")

    ve = Event()
    ve.add("uid", uid)
    ve.add("dtstamp", datetime.now(tz=UTC))
    ve.add("summary", event.title)
    ve.add("description", event.notes)
    if event.location:
        ve.add("location", event.location)
    if event.url:
        ve.add("url", event.url)

    if event.has_timing:
        _add_timing(ve, event)
    elif keep_timing_from is not None and keep_timing_from.dtstart is not None:
        ve["dtstart"] = keep_timing_from.dtstart
        if keep_timing_from.dtend is not None:
            ve["dtend"] = keep_timing_from.dtend
    else:
        raise ValueError(f"Event {event.remote_id} has no timing and nothing to keep.")

    for rule in event.recurrence:
        ve.add("rrule", rule.to_ical())

    for reminder in event.reminders:
        _add_valarm(ve, reminder.offset_minutes)

    ve.add(HASH_PROPERTY, content_hash)

    cal.add_component(ve)
    return cal.to_ical().decode("utf-8")


def parse_resource(ics_text: str) -> ParsedResource | None:
    """Extract what the store needs from a stored VCALENDAR; None if unparseable."""
    try:
        cal = Calendar.from_ical(ics_text)
    except ValueError as exc:
        log.warning("ics-parse-failed err=%s", exc)
        return None
    for comp in cal.walk("VEVENT"):
        uid = comp.get("uid")
        notes = comp.get("description")
        content_hash = comp.get(HASH_PROPERTY)
        return ParsedResource(
            uid=str(uid) if uid is not None else None,
            notes=str(notes) if notes is not None else None,
            content_hash=str(content_hash) if content_hash is not None else None,
            dtstart=comp.get("dtstart"),
            dtend=comp.get("dtend"),
        )
    return None
