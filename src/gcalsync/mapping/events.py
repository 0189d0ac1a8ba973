"""Google Calendar event → LocalEvent translation.

Rules
- Title: `summary`, or "(No title)".
- Notes: `description` + blank line + `[gcal_id:<event id>]`, rebuilt on every run.
- Time handling:
  - `dateTime` → Instant (timezone-aware; naive values take the event `timeZone`).
  - `date` only → all-day. Google all-day ranges are end-exclusive, local ones
    end-inclusive, so the end date moves back one day.
  - Either side may stay unresolved (None); the event is then metadata-only.
- Recurrence: RRULE lines via mapping.recurrence; unparseable lines dropped.
- Reminders: explicit overrides, else a synthesized default when
  `reminders.useDefault` is set (the user's real default is not in the payload).
- URL: first conference entry point, else `htmlLink`.
- Attendees: e-mail addresses only, informational.

Public API
- translate_event(event, *, default_tz="UTC", default_reminder_minutes=10) -> LocalEvent
"""

from __future__ import annotations

from datetime import timedelta

from ..google.models import RemoteEvent
from ..models import AllDayDate, EventTime, LocalEvent, Reminder
from ..sync.correlation import embed
from ..utils.timezones import resolve_event_time
from .recurrence import parse_recurrence

__all__ = ["DEFAULT_REMINDER_MINUTES", "UNTITLED", "translate_event"]

UNTITLED = "(No title)"
DEFAULT_REMINDER_MINUTES = 10


def _resolve_times(
    event: RemoteEvent, default_tz: str
) -> tuple[EventTime | None, EventTime | None, bool]:
    start = resolve_event_time(event.start, default_tz=default_tz)
    end = resolve_event_time(event.end, default_tz=default_tz)
    all_day = isinstance(start, AllDayDate)
    if all_day and isinstance(end, AllDayDate):
        inclusive = end.value - timedelta(days=1)
        # zero-length all-day ranges keep end == start
        end = AllDayDate(max(inclusive, start.value))  # type: ignore[union-attr]
    return start, end, all_day


def _reminders(event: RemoteEvent, default_minutes: int) -> tuple[Reminder, ...]:
    conf = event.reminders
    if conf is None:
        return ()
    out = [
        Reminder(offset_minutes=-int(o.minutes))
        for o in conf.overrides or []
        if o.minutes is not None
    ]
    if not out and conf.use_default:
        out.append(Reminder(offset_minutes=-int(default_minutes)))
    return tuple(out)


def _url(event: RemoteEvent) -> str | None:
    conf = event.conference_data
    if conf and conf.entry_points:
        uri = conf.entry_points[0].uri
        if uri:
            return uri
    return event.html_link or None


def translate_event(
    event: RemoteEvent,
    *,
    default_tz: str = "UTC",
    default_reminder_minutes: int = DEFAULT_REMINDER_MINUTES,
) -> LocalEvent:
    """Map a non-cancelled Google event to a LocalEvent. Pure; no I/O."""
    start, end, all_day = _resolve_times(event, default_tz)
    return LocalEvent(
        remote_id=event.id,
        title=event.summary or UNTITLED,
        notes=embed(event.id, event.description),
        location=event.location,
        start=start,
        end=end,
        all_day=all_day,
        recurrence=parse_recurrence(event.recurrence),
        reminders=_reminders(event, default_reminder_minutes),
        url=_url(event),
        attendees=tuple(a.email for a in event.attendees or [] if a.email),
    )
