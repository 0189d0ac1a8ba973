from datetime import date, datetime, timedelta, timezone

from gcalsync.google.models import EventDateTime, RemoteEvent
from gcalsync.mapping.events import UNTITLED, translate_event
from gcalsync.models import AllDayDate, Frequency, Instant, Reminder
from gcalsync.utils.timezones import parse_rfc3339, resolve_event_time


def _event(**payload) -> RemoteEvent:
    payload.setdefault("id", "evt1")
    return RemoteEvent.model_validate(payload)


def test_all_day_end_becomes_inclusive() -> None:
    ev = translate_event(
        _event(start={"date": "2024-01-01"}, end={"date": "2024-01-03"}, summary="Trip")
    )
    assert ev.all_day is True
    assert ev.start == AllDayDate(date(2024, 1, 1))
    assert ev.end == AllDayDate(date(2024, 1, 2))


def test_single_day_all_day_event() -> None:
    ev = translate_event(_event(start={"date": "2024-03-10"}, end={"date": "2024-03-11"}))
    assert ev.start == ev.end == AllDayDate(date(2024, 3, 10))


def test_zero_length_all_day_end_clamped_to_start() -> None:
    ev = translate_event(_event(start={"date": "2024-03-10"}, end={"date": "2024-03-10"}))
    assert ev.end == AllDayDate(date(2024, 3, 10))


def test_timed_event_keeps_offset_and_tzid() -> None:
    ev = translate_event(
        _event(
            start={"dateTime": "2024-06-01T10:00:00-04:00", "timeZone": "America/New_York"},
            end={"dateTime": "2024-06-01T11:30:00.500-04:00"},
        )
    )
    assert ev.all_day is False
    assert isinstance(ev.start, Instant)
    assert ev.start.tzid == "America/New_York"
    assert ev.start.value.utcoffset() == timedelta(hours=-4)
    assert isinstance(ev.end, Instant)
    assert ev.end.value.microsecond == 500000


def test_naive_datetime_takes_event_timezone() -> None:
    t = resolve_event_time(
        EventDateTime(date_time="2024-06-01T10:00:00", time_zone="Europe/Berlin")
    )
    assert isinstance(t, Instant)
    assert t.value.utcoffset() == timedelta(hours=2)


def test_unparseable_times_leave_event_without_timing() -> None:
    ev = translate_event(_event(start={"dateTime": "not-a-date"}, end={"date": "bad"}))
    assert ev.start is None and ev.end is None
    assert ev.has_timing is False


def test_missing_end_means_no_timing() -> None:
    ev = translate_event(_event(start={"dateTime": "2024-06-01T10:00:00Z"}))
    assert ev.has_timing is False


def test_rfc3339_with_and_without_fraction() -> None:
    a = parse_rfc3339("2024-06-01T10:00:00Z")
    b = parse_rfc3339("2024-06-01T10:00:00.123Z")
    assert a == datetime(2024, 6, 1, 10, tzinfo=timezone.utc)
    assert b is not None and b.microsecond == 123000
    assert parse_rfc3339("yesterday-ish") is None


def test_title_and_notes() -> None:
    ev = translate_event(_event(description="Agenda", start=None, end=None))
    assert ev.title == UNTITLED
    assert ev.notes == "Agenda\n\n[gcal_id:evt1]"

    bare = translate_event(_event(summary="Standup"))
    assert bare.title == "Standup"
    assert bare.notes == "\n\n[gcal_id:evt1]"


def test_sentinel_appended_even_if_description_has_one() -> None:
    ev = translate_event(_event(description="copied [gcal_id:evt1]"))
    assert ev.notes.count("[gcal_id:evt1]") == 2


def test_reminder_overrides() -> None:
    ev = translate_event(
        _event(
            reminders={
                "useDefault": False,
                "overrides": [{"method": "popup", "minutes": 30}, {"method": "email", "minutes": 1440}],
            }
        )
    )
    assert ev.reminders == (Reminder(-30), Reminder(-1440))


def test_reminder_use_default_synthesized() -> None:
    ev = translate_event(_event(reminders={"useDefault": True}))
    assert ev.reminders == (Reminder(-10),)
    custom = translate_event(_event(reminders={"useDefault": True}), default_reminder_minutes=15)
    assert custom.reminders == (Reminder(-15),)


def test_no_reminders() -> None:
    assert translate_event(_event()).reminders == ()
    assert translate_event(_event(reminders={"useDefault": False})).reminders == ()


def test_url_prefers_conference_entry_point() -> None:
    ev = translate_event(
        _event(
            htmlLink="https://calendar.google.com/event?eid=1",
            conferenceData={"entryPoints": [{"entryPointType": "video", "uri": "https://meet.google.com/abc"}]},
        )
    )
    assert ev.url == "https://meet.google.com/abc"
    fallback = translate_event(_event(htmlLink="https://calendar.google.com/event?eid=1"))
    assert fallback.url == "https://calendar.google.com/event?eid=1"
    assert translate_event(_event()).url is None


def test_recurrence_and_attendees() -> None:
    ev = translate_event(
        _event(
            recurrence=["RRULE:FREQ=BOGUS", "RRULE:FREQ=DAILY", "EXDATE:20240105T100000Z"],
            attendees=[{"email": "a@example.com"}, {"displayName": "No Mail"}, {"email": "b@example.com"}],
        )
    )
    assert [r.frequency for r in ev.recurrence] == [Frequency.DAILY]
    assert ev.attendees == ("a@example.com", "b@example.com")
