"""Local calendar store contract.

The sync engine only talks to the local side through `CalendarStore`.
Handles are opaque to the engine except for `EventHandle.content_hash`,
which lets it skip rewriting an unchanged event.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

from ..models import LocalEvent

__all__ = ["CalendarHandle", "CalendarStore", "EventHandle", "TimeWindow"]


@dataclass(frozen=True)
class CalendarHandle:
    name: str
    ref: str  # store-native identifier (e.g. CalDAV collection path)
    color: str | None = None


@dataclass(frozen=True)
class EventHandle:
    ref: str  # store-native identifier (e.g. CalDAV resource href)
    uid: str | None = None
    notes: str | None = None
    content_hash: str | None = None
    etag: str | None = None


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    @classmethod
    def around(cls, days: int, now: datetime | None = None) -> TimeWindow:
        """[now - days, now + days]"""
        anchor = now or datetime.now(tz=UTC)
        span = timedelta(days=days)
        return cls(start=anchor - span, end=anchor + span)


class CalendarStore(Protocol):
    def find_calendar(self, name: str) -> CalendarHandle | None: ...

    def find_or_create_calendar(self, name: str, color: str | None = None) -> CalendarHandle: ...

    def find_event_by_correlation(
        self, remote_id: str, calendar: CalendarHandle, window: TimeWindow
    ) -> EventHandle | None: ...

    def create_event(self, data: LocalEvent, calendar: CalendarHandle) -> EventHandle: ...

    def update_event(self, handle: EventHandle, data: LocalEvent) -> None: ...

    def delete_event(self, handle: EventHandle) -> None: ...

    def delete_all_events(self, calendar: CalendarHandle) -> int: ...
