"""Test doubles: an in-memory CalendarStore and a scripted Google API service."""

from __future__ import annotations

import dataclasses
from collections import deque
from datetime import UTC, datetime, time, timedelta
from typing import Any

import httplib2  # type: ignore[import-untyped]
from googleapiclient.errors import HttpError  # type: ignore[import-not-found]

from gcalsync.errors import GCalSyncError
from gcalsync.models import AllDayDate, Instant, LocalEvent
from gcalsync.store.base import CalendarHandle, EventHandle, TimeWindow
from gcalsync.sync.correlation import contains
from gcalsync.utils.hashing import hash_event

# -----------------
# Google side
# -----------------

# inside the default correlation window regardless of when the suite runs
_SOON = (datetime.now(tz=UTC) + timedelta(days=1)).replace(hour=10, minute=0, second=0, microsecond=0)
SOON_START = _SOON.strftime("%Y-%m-%dT%H:%M:%SZ")
SOON_END = (_SOON + timedelta(hours=1)).strftime("%Y-%m-%dT%H:%M:%SZ")


def http_error(status: int) -> HttpError:
    return HttpError(resp=httplib2.Response({"status": status}), content=b"{}")


def gevent(
    event_id: str,
    *,
    summary: str | None = "Meeting",
    start: str | None = SOON_START,
    end: str | None = SOON_END,
    all_day: bool = False,
    status: str = "confirmed",
    **extra: Any,
) -> dict[str, Any]:
    """Minimal Calendar API event payload."""
    if status == "cancelled":
        return {"id": event_id, "status": "cancelled"}
    key = "date" if all_day else "dateTime"
    payload: dict[str, Any] = {"id": event_id, "status": status, "summary": summary}
    if start is not None:
        payload["start"] = {key: start}
    if end is not None:
        payload["end"] = {key: end}
    payload.update(extra)
    return payload


def gcalendar(
    cal_id: str,
    summary: str | None = "Work",
    *,
    selected: bool | None = True,
    hidden: bool | None = None,
    color: str | None = "#9fe1e7",
) -> dict[str, Any]:
    item: dict[str, Any] = {"id": cal_id, "summary": summary, "backgroundColor": color}
    if selected is not None:
        item["selected"] = selected
    if hidden is not None:
        item["hidden"] = hidden
    return item


class _Request:
    def __init__(self, outcome: Any) -> None:
        self._outcome = outcome

    def execute(self) -> Any:
        if isinstance(self._outcome, Exception):
            raise self._outcome
        return self._outcome


class _CalendarListResource:
    def __init__(self, svc: FakeGoogleService) -> None:
        self._svc = svc

    def list(self, **params: Any) -> _Request:
        if self._svc.calendar_list_error is not None:
            return _Request(self._svc.calendar_list_error)
        return _Request({"items": list(self._svc.calendars)})


class _EventsResource:
    def __init__(self, svc: FakeGoogleService) -> None:
        self._svc = svc

    def list(self, **params: Any) -> _Request:
        self._svc.calls.append(params)
        queue = self._svc.scripts.get(params["calendarId"])
        if not queue:
            raise AssertionError(f"unexpected events.list call: {params}")
        return _Request(queue.popleft())


class FakeGoogleService:
    """Stands in for `googleapiclient.discovery.build("calendar", "v3")`.

    Each `events().list()` call for a calendar consumes the next scripted
    outcome (a response dict or an exception) for that calendar.
    """

    def __init__(self, calendars: list[dict[str, Any]] | None = None) -> None:
        self.calendars = calendars or []
        self.calendar_list_error: Exception | None = None
        self.scripts: dict[str, deque[Any]] = {}
        self.calls: list[dict[str, Any]] = []

    def script(self, calendar_id: str, *outcomes: Any) -> FakeGoogleService:
        self.scripts.setdefault(calendar_id, deque()).extend(outcomes)
        return self

    def calls_for(self, calendar_id: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["calendarId"] == calendar_id]

    def calendarList(self) -> _CalendarListResource:  # noqa: N802 - mirrors the API
        return _CalendarListResource(self)

    def events(self) -> _EventsResource:
        return _EventsResource(self)


# -----------------
# Local side
# -----------------


@dataclasses.dataclass
class StoredEvent:
    data: LocalEvent
    content_hash: str


def _start_of(event: LocalEvent) -> datetime | None:
    if isinstance(event.start, Instant):
        return event.start.value
    if isinstance(event.start, AllDayDate):
        return datetime.combine(event.start.value, time(), tzinfo=UTC)
    return None


class InMemoryStore:
    """CalendarStore keeping calendars and events in dicts.

    `ops` records every mutation as (operation, remote_id or calendar name).
    Remote ids listed in `fail_on` raise a calendar-scoped error on write.
    """

    def __init__(self) -> None:
        self.calendars: dict[str, CalendarHandle] = {}
        self.events: dict[str, dict[str, StoredEvent]] = {}
        self.ops: list[tuple[str, str]] = []
        self.fail_on: set[str] = set()
        self._seq = 0

    def _next_ref(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}{self._seq}"

    # calendars

    def find_calendar(self, name: str) -> CalendarHandle | None:
        return self.calendars.get(name)

    def find_or_create_calendar(self, name: str, color: str | None = None) -> CalendarHandle:
        if name not in self.calendars:
            handle = CalendarHandle(name=name, ref=self._next_ref("cal-"), color=color)
            self.calendars[name] = handle
            self.events[handle.ref] = {}
            self.ops.append(("create_calendar", name))
        return self.calendars[name]

    # events

    def find_event_by_correlation(
        self, remote_id: str, calendar: CalendarHandle, window: TimeWindow
    ) -> EventHandle | None:
        for ref, stored in self.events.get(calendar.ref, {}).items():
            start = _start_of(stored.data)
            if start is not None and not (window.start <= start <= window.end):
                continue
            if contains(stored.data.notes, remote_id):
                return EventHandle(
                    ref=ref, notes=stored.data.notes, content_hash=stored.content_hash
                )
        return None

    def create_event(self, data: LocalEvent, calendar: CalendarHandle) -> EventHandle:
        self._maybe_fail(data)
        ref = self._next_ref("evt-")
        stored = StoredEvent(data=data, content_hash=hash_event(data))
        self.events[calendar.ref][ref] = stored
        self.ops.append(("create", data.remote_id))
        return EventHandle(ref=ref, notes=data.notes, content_hash=stored.content_hash)

    def update_event(self, handle: EventHandle, data: LocalEvent) -> None:
        self._maybe_fail(data)
        for events in self.events.values():
            if handle.ref in events:
                old = events[handle.ref].data
                kept = data
                if not data.has_timing:
                    kept = dataclasses.replace(
                        data, start=old.start, end=old.end, all_day=old.all_day
                    )
                events[handle.ref] = StoredEvent(data=kept, content_hash=hash_event(data))
                self.ops.append(("update", data.remote_id))
                return
        raise GCalSyncError(f"no such event {handle.ref}")

    def delete_event(self, handle: EventHandle) -> None:
        for events in self.events.values():
            stored = events.pop(handle.ref, None)
            if stored is not None:
                self.ops.append(("delete", stored.data.remote_id))
                return

    def delete_all_events(self, calendar: CalendarHandle) -> int:
        events = self.events.get(calendar.ref, {})
        count = len(events)
        events.clear()
        self.ops.append(("delete_all", calendar.name))
        return count

    # helpers

    def _maybe_fail(self, data: LocalEvent) -> None:
        if data.remote_id in self.fail_on:
            raise GCalSyncError(f"simulated store failure for {data.remote_id}")

    def all_events(self, calendar_name: str) -> list[LocalEvent]:
        handle = self.calendars[calendar_name]
        return [s.data for s in self.events[handle.ref].values()]

    def mutations(self) -> list[tuple[str, str]]:
        return [op for op in self.ops if op[0] in {"create", "update", "delete"}]
