"""Local event model produced by the translators and consumed by calendar stores.

Types
- EventTime = Instant | AllDayDate (tagged start/end value)
- RecurrenceRule with WeekdayRule entries and an optional RecurrenceEnd
- Reminder (negative minute offset relative to start)
- LocalEvent (one translated remote event)

All-day ranges here are end-inclusive: an event covering Jan 1 and Jan 2
has start=AllDayDate(2024-01-01) and end=AllDayDate(2024-01-02). Stores that
use the iCalendar exclusive convention convert on write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any

__all__ = [
    "AllDayDate",
    "EventTime",
    "Frequency",
    "Instant",
    "LocalEvent",
    "RecurrenceEnd",
    "RecurrenceRule",
    "Reminder",
    "Weekday",
    "WeekdayRule",
]


class Frequency(StrEnum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class Weekday(StrEnum):
    SU = "SU"
    MO = "MO"
    TU = "TU"
    WE = "WE"
    TH = "TH"
    FR = "FR"
    SA = "SA"


@dataclass(frozen=True)
class Instant:
    """A timestamp. `value` is always timezone-aware; `tzid` is the remote zone name."""

    value: datetime
    tzid: str | None = None


@dataclass(frozen=True)
class AllDayDate:
    value: date


EventTime = Instant | AllDayDate


@dataclass(frozen=True)
class WeekdayRule:
    weekday: Weekday
    ordinal: int | None = None  # 1 = first, -1 = last

    def to_ical(self) -> str:
        return f"{self.ordinal}{self.weekday}" if self.ordinal else str(self.weekday)


@dataclass(frozen=True)
class RecurrenceEnd:
    """Rule terminator: exactly one of `count` / `until` is set."""

    count: int | None = None
    until: datetime | None = None


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: Frequency
    interval: int = 1
    days_of_week: tuple[WeekdayRule, ...] = ()
    days_of_month: tuple[int, ...] = ()
    months: tuple[int, ...] = ()
    end: RecurrenceEnd | None = None

    def to_ical(self) -> dict[str, Any]:
        """Return the mapping form accepted by icalendar's vRecur."""
        rec: dict[str, Any] = {"FREQ": str(self.frequency)}
        if self.interval != 1:
            rec["INTERVAL"] = self.interval
        if self.days_of_week:
            rec["BYDAY"] = [d.to_ical() for d in self.days_of_week]
        if self.days_of_month:
            rec["BYMONTHDAY"] = list(self.days_of_month)
        if self.months:
            rec["BYMONTH"] = list(self.months)
        if self.end is not None:
            if self.end.count is not None:
                rec["COUNT"] = self.end.count
            elif self.end.until is not None:
                rec["UNTIL"] = self.end.until
        return rec


@dataclass(frozen=True)
class Reminder:
    offset_minutes: int  # negative: before start


@dataclass(frozen=True)
class LocalEvent:
    remote_id: str
    title: str
    notes: str
    location: str | None = None
    start: EventTime | None = None
    end: EventTime | None = None
    all_day: bool = False
    recurrence: tuple[RecurrenceRule, ...] = ()
    reminders: tuple[Reminder, ...] = ()
    url: str | None = None
    attendees: tuple[str, ...] = field(default=())

    @property
    def has_timing(self) -> bool:
        return self.start is not None and self.end is not None
